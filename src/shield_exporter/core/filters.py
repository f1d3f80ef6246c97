from collections.abc import Iterable

ARCHIVES_COLLECTOR = "Archives"
JOBS_COLLECTOR = "Jobs"
RETENTION_POLICIES_COLLECTOR = "RetentionPolicies"
SCHEDULES_COLLECTOR = "Schedules"
STATUS_COLLECTOR = "Status"
STORES_COLLECTOR = "Stores"
TARGETS_COLLECTOR = "Targets"
TASKS_COLLECTOR = "Tasks"

SUPPORTED_COLLECTORS = (
    ARCHIVES_COLLECTOR,
    JOBS_COLLECTOR,
    RETENTION_POLICIES_COLLECTOR,
    SCHEDULES_COLLECTOR,
    STATUS_COLLECTOR,
    STORES_COLLECTOR,
    TARGETS_COLLECTOR,
    TASKS_COLLECTOR,
)


class ConfigurationError(Exception):
    """Invalid exporter configuration. Fatal at startup."""


class UnsupportedCollectorError(ConfigurationError):
    """Raised when the collectors filter names an unknown collector."""

    def __init__(self, name: str):
        super().__init__(f"Collector filter `{name}` is not supported")
        self.name = name


class CollectorsFilter:
    """Allow-set of collector kinds. An empty filter enables every collector."""

    def __init__(self, names: Iterable[str] = ()):
        enabled: set[str] = set()
        for name in names:
            kind = name.strip()
            if kind not in SUPPORTED_COLLECTORS:
                raise UnsupportedCollectorError(name)
            enabled.add(kind)
        self._enabled = frozenset(enabled)

    def enabled(self, kind: str) -> bool:
        if not self._enabled:
            return True
        return kind in self._enabled

    def __repr__(self) -> str:
        return f"CollectorsFilter({sorted(self._enabled)!r})"


def parse_collectors_filter(value: str) -> CollectorsFilter:
    """Build a filter from a comma separated list, e.g. "Archives, Jobs"."""
    if not value:
        return CollectorsFilter()
    return CollectorsFilter(value.split(","))
