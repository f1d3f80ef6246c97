from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

SHIELD_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def to_unix_seconds(value: Any) -> int:
    """
    Normalize a SHIELD timestamp to unix seconds.

    SHIELD encodes timestamps as "YYYY-MM-DD HH:MM:SS" strings (UTC), and
    uses an empty string for "never". Integers and ISO-8601 strings are
    accepted as well. Zero means unset.
    """
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        raise ValueError("boolean is not a timestamp")
    if isinstance(value, int | float):
        return int(value)
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, str):
        try:
            moment = datetime.strptime(value, SHIELD_TIMESTAMP_FORMAT)
        except ValueError:
            moment = datetime.fromisoformat(value)
    else:
        raise ValueError(f"unsupported timestamp: {value!r}")

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return int(moment.timestamp())


class ShieldRecord(BaseModel):
    """Base for records returned by the SHIELD API. Unknown fields are ignored."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    uuid: str = ""


class ShieldStatus(BaseModel):
    """Backend identity reported by /v1/status."""

    name: str = ""
    version: str = ""


class Archive(ShieldRecord):
    status: str = ""
    store_plugin: str = ""
    target_plugin: str = ""


class Job(ShieldRecord):
    name: str = ""
    paused: bool = False
    store_plugin: str = ""
    target_plugin: str = ""


class JobHealth(BaseModel):
    """Health of a single job as reported by /v1/status/jobs."""

    name: str = ""
    last_run: int = 0
    next_run: int = 0
    paused: bool = False
    status: str = ""


class RetentionPolicy(ShieldRecord):
    name: str = ""
    expires: int = 0


class Schedule(ShieldRecord):
    name: str = ""
    when: str = ""


class Store(ShieldRecord):
    name: str = ""
    plugin: str = ""


class Target(ShieldRecord):
    name: str = ""
    plugin: str = ""


class Task(ShieldRecord):
    op: str = Field(default="", alias="type")
    status: str = ""
    started_at: int = 0
    stopped_at: int = 0

    @field_validator("started_at", "stopped_at", mode="before")
    @classmethod
    def parse_timestamp(cls, value: Any) -> int:
        return to_unix_seconds(value)

    def duration_seconds(self) -> float | None:
        """Elapsed run time, or None when the task has not both started and stopped."""
        if not self.started_at or not self.stopped_at:
            return None
        duration = self.stopped_at - self.started_at
        if duration < 0:
            return None
        return float(duration)


class InternalStatus(BaseModel):
    """Supervisor queues reported by /v1/status/internal."""

    pending_tasks: list[Any] = Field(default_factory=list)
    running_tasks: list[Any] = Field(default_factory=list)
    schedule_queue: list[Any] = Field(default_factory=list)
    run_queue: list[Any] = Field(default_factory=list)

    @field_validator("pending_tasks", "running_tasks", "schedule_queue", "run_queue", mode="before")
    @classmethod
    def null_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value
