"""SHIELD resource collectors, one per collector kind."""

from collections.abc import Callable

from prometheus_client.metrics_core import Metric

from shield_exporter.client import ShieldClient, ShieldNotImplementedError
from shield_exporter.config.logging import get_logger
from shield_exporter.core import filters
from shield_exporter.core.collector import Aggregation, FamilyAggregate, FamilySpec, ResourceCollector
from shield_exporter.models import Archive, Job, JobHealth, Store, Target, Task

logger = get_logger(__name__)

JOB_STATUS_CODES = {
    "pending": 1,
    "running": 2,
    "canceled": 3,
    "failed": 4,
    "done": 5,
}


def job_status_code(status: str) -> int:
    """Numeric job status, 0 when unknown."""
    return JOB_STATUS_CODES.get(status, 0)


def archives_collector(client: ShieldClient, namespace: str, environment: str, backend_name: str) -> ResourceCollector:
    def labels(archive: Archive) -> tuple[str, ...]:
        return (archive.status, archive.store_plugin, archive.target_plugin)

    return ResourceCollector(
        kind=filters.ARCHIVES_COLLECTOR,
        resource="archives",
        noun="Archive",
        fetch=client.get_archives,
        families=[
            FamilySpec(
                name="total",
                help="Labeled total number of Shield Archives.",
                aggregation=Aggregation.COUNT,
                label_names=("archive_status", "store_plugin", "target_plugin"),
                labels=labels,
            )
        ],
        namespace=namespace,
        environment=environment,
        backend_name=backend_name,
    )


class JobsCollector(ResourceCollector):
    """
    Jobs totals plus per-job health.

    Per-job health is read from /v1/status/jobs after the jobs listing. Older
    backends answer 501 for it, which is not an error. Any other failure is
    recorded as a scrape error, but jobs_total is still emitted.
    """

    def __init__(self, client: ShieldClient, namespace: str, environment: str, backend_name: str):
        super().__init__(
            kind=filters.JOBS_COLLECTOR,
            resource="jobs",
            noun="Job",
            fetch=client.get_jobs,
            families=[
                FamilySpec(
                    name="total",
                    help="Labeled total number of Shield Jobs.",
                    aggregation=Aggregation.COUNT,
                    label_names=("job_paused", "store_plugin", "target_plugin"),
                    labels=self._job_labels,
                )
            ],
            namespace=namespace,
            environment=environment,
            backend_name=backend_name,
        )
        self.fetch_health: Callable[[], dict[str, JobHealth]] = client.get_jobs_status

        health_families = [
            self._job_family(
                "last_run",
                "Number of seconds since 1970 since last run of a Shield Job.",
                lambda health: health.last_run,
            ),
            self._job_family(
                "next_run",
                "Number of seconds since 1970 until next run of a Shield Job.",
                lambda health: health.next_run,
            ),
            self._job_family(
                "status",
                "Shield Job status (0 for unknown, 1 for pending, 2 for running, 3 for canceled, "
                "4 for failed, 5 for done).",
                lambda health: job_status_code(health.status),
            ),
            self._job_family(
                "paused",
                "Shield Job pause status (1 for paused, 0 for unpaused).",
                lambda health: 1 if health.paused else 0,
            ),
        ]
        self.health_aggregates = [
            FamilyAggregate(spec, self.descriptor(spec.subsystem, spec.name, spec.help, spec.label_names))
            for spec in health_families
        ]

    @staticmethod
    def _job_labels(job: Job) -> tuple[str, ...]:
        return (str(job.paused).lower(), job.store_plugin, job.target_plugin)

    @staticmethod
    def _job_family(name: str, help: str, value: Callable[[JobHealth], float]) -> FamilySpec:
        return FamilySpec(
            name=name,
            help=help,
            aggregation=Aggregation.SET,
            label_names=("job_name",),
            labels=lambda health: (health.name,),
            value=value,
            subsystem="job",
        )

    def descriptors(self):
        base = super().descriptors()
        return [*(aggregate.descriptor for aggregate in self.health_aggregates), *base]

    def report(self, metrics: list[Metric]) -> None:
        for aggregate in self.health_aggregates:
            aggregate.clear()

        super().report(metrics)

        try:
            jobs_status = self.fetch_health()
        except ShieldNotImplementedError:
            logger.debug("Shield backend does not implement `/v1/status/jobs` API")
            return

        for aggregate in self.health_aggregates:
            aggregate.aggregate(jobs_status.values())
        metrics.extend(aggregate.metric() for aggregate in self.health_aggregates)


def jobs_collector(client: ShieldClient, namespace: str, environment: str, backend_name: str) -> ResourceCollector:
    return JobsCollector(client, namespace, environment, backend_name)


def retention_policies_collector(
    client: ShieldClient, namespace: str, environment: str, backend_name: str
) -> ResourceCollector:
    return ResourceCollector(
        kind=filters.RETENTION_POLICIES_COLLECTOR,
        resource="retention_policies",
        noun="Retention Policies",
        fetch=client.get_retention_policies,
        families=[
            FamilySpec(
                name="total",
                help="Total number of Shield Retention Policies.",
                aggregation=Aggregation.SIZE,
            )
        ],
        namespace=namespace,
        environment=environment,
        backend_name=backend_name,
    )


def schedules_collector(client: ShieldClient, namespace: str, environment: str, backend_name: str) -> ResourceCollector:
    return ResourceCollector(
        kind=filters.SCHEDULES_COLLECTOR,
        resource="schedules",
        noun="Schedule",
        fetch=client.get_schedules,
        families=[
            FamilySpec(
                name="total",
                help="Total number of Shield Schedules.",
                aggregation=Aggregation.SIZE,
            )
        ],
        namespace=namespace,
        environment=environment,
        backend_name=backend_name,
    )


def status_collector(client: ShieldClient, namespace: str, environment: str, backend_name: str) -> ResourceCollector:
    def queue(name: str, help: str, field: str) -> FamilySpec:
        return FamilySpec(
            name=name,
            help=help,
            aggregation=Aggregation.SIZE,
            value=lambda status: len(getattr(status, field)),
        )

    families: list[FamilySpec] = [
        queue("pending_tasks_total", "Total number of Shield pending Tasks.", "pending_tasks"),
        queue("running_tasks_total", "Total number of Shield running Tasks.", "running_tasks"),
        queue(
            "schedule_queue_total",
            "Total number of Shield Tasks in the supervisor scheduler queue.",
            "schedule_queue",
        ),
        queue("run_queue_total", "Total number of Shield Tasks in the supervisor run queue.", "run_queue"),
    ]

    return ResourceCollector(
        kind=filters.STATUS_COLLECTOR,
        resource="status",
        noun="Status",
        fetch=client.get_internal_status,
        families=families,
        namespace=namespace,
        environment=environment,
        backend_name=backend_name,
    )


def stores_collector(client: ShieldClient, namespace: str, environment: str, backend_name: str) -> ResourceCollector:
    def labels(store: Store) -> tuple[str, ...]:
        return (store.plugin,)

    return ResourceCollector(
        kind=filters.STORES_COLLECTOR,
        resource="stores",
        noun="Store",
        fetch=client.get_stores,
        families=[
            FamilySpec(
                name="total",
                help="Labeled total number of Shield Stores.",
                aggregation=Aggregation.COUNT,
                label_names=("store_plugin",),
                labels=labels,
            )
        ],
        namespace=namespace,
        environment=environment,
        backend_name=backend_name,
    )


def targets_collector(client: ShieldClient, namespace: str, environment: str, backend_name: str) -> ResourceCollector:
    def labels(target: Target) -> tuple[str, ...]:
        return (target.plugin,)

    return ResourceCollector(
        kind=filters.TARGETS_COLLECTOR,
        resource="targets",
        noun="Target",
        fetch=client.get_targets,
        families=[
            FamilySpec(
                name="total",
                help="Labeled total number of Shield Targets.",
                aggregation=Aggregation.COUNT,
                label_names=("target_plugin",),
                labels=labels,
            )
        ],
        namespace=namespace,
        environment=environment,
        backend_name=backend_name,
    )


def tasks_collector(client: ShieldClient, namespace: str, environment: str, backend_name: str) -> ResourceCollector:
    def labels(task: Task) -> tuple[str, ...]:
        return (task.op, task.status)

    label_names = ("task_operation", "task_status")
    return ResourceCollector(
        kind=filters.TASKS_COLLECTOR,
        resource="tasks",
        noun="Task",
        fetch=client.get_tasks,
        families=[
            FamilySpec(
                name="total",
                help="Labeled total number of Shield Tasks.",
                aggregation=Aggregation.COUNT,
                label_names=label_names,
                labels=labels,
            ),
            FamilySpec(
                name="duration_seconds",
                help="Labeled summary of Shield Task durations in seconds.",
                aggregation=Aggregation.OBSERVE,
                label_names=label_names,
                labels=labels,
                value=Task.duration_seconds,
            ),
        ],
        namespace=namespace,
        environment=environment,
        backend_name=backend_name,
    )


COLLECTOR_FACTORIES: dict[str, Callable[[ShieldClient, str, str, str], ResourceCollector]] = {
    filters.ARCHIVES_COLLECTOR: archives_collector,
    filters.JOBS_COLLECTOR: jobs_collector,
    filters.RETENTION_POLICIES_COLLECTOR: retention_policies_collector,
    filters.SCHEDULES_COLLECTOR: schedules_collector,
    filters.STATUS_COLLECTOR: status_collector,
    filters.STORES_COLLECTOR: stores_collector,
    filters.TARGETS_COLLECTOR: targets_collector,
    filters.TASKS_COLLECTOR: tasks_collector,
}
