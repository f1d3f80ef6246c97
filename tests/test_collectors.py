from conftest import BACKEND_NAME, ENVIRONMENT, NAMESPACE, family_names, family_samples, sample_value

from shield_exporter.client import ShieldAPIError, ShieldNotImplementedError
from shield_exporter.core.collectors import (
    archives_collector,
    job_status_code,
    jobs_collector,
    retention_policies_collector,
    schedules_collector,
    status_collector,
    stores_collector,
    targets_collector,
    tasks_collector,
)
from shield_exporter.models import (
    Archive,
    InternalStatus,
    Job,
    JobHealth,
    RetentionPolicy,
    Schedule,
    Store,
    Target,
    Task,
)


def collect(collector):
    return list(collector.collect())


# -- Archives -----------------------------------------------------------------


def test_archives_end_to_end(client):
    client.get_archives.return_value = [
        Archive(status="done", store_plugin="storeA", target_plugin="targetA"),
        Archive(status="purged", store_plugin="storeA", target_plugin="targetB"),
        Archive(status="done", store_plugin="storeB", target_plugin="targetA"),
        Archive(status="purged", store_plugin="storeB", target_plugin="targetB"),
    ]
    collector = archives_collector(client, NAMESPACE, ENVIRONMENT, BACKEND_NAME)

    metrics = collect(collector)

    samples = family_samples(metrics, "test_namespace_archives_total")
    assert len(samples) == 4
    assert all(sample.value == 1 for sample in samples)
    assert (
        sample_value(
            metrics,
            "test_namespace_archives_total",
            {"archive_status": "purged", "store_plugin": "storeB", "target_plugin": "targetB"},
        )
        == 1
    )
    assert sample_value(metrics, "test_namespace_archives_scrapes_total") == 1
    assert sample_value(metrics, "test_namespace_archives_scrape_errors_total") == 0
    assert sample_value(metrics, "test_namespace_last_archives_scrape_error") == 0
    assert sample_value(metrics, "test_namespace_last_archives_scrape_timestamp") > 0
    assert sample_value(metrics, "test_namespace_last_archives_scrape_duration_seconds") >= 0
    client.get_archives.assert_called_once_with()


def test_archives_counts_duplicate_labels(client):
    client.get_archives.return_value = [
        Archive(status="done", store_plugin="fs", target_plugin="postgres"),
        Archive(status="done", store_plugin="fs", target_plugin="postgres"),
    ]
    collector = archives_collector(client, NAMESPACE, ENVIRONMENT, BACKEND_NAME)

    metrics = collect(collector)

    labels = {"archive_status": "done", "store_plugin": "fs", "target_plugin": "postgres"}
    assert sample_value(metrics, "test_namespace_archives_total", labels) == 2


def test_aggregation_does_not_accumulate_across_scrapes(client):
    client.get_archives.return_value = [Archive(status="done", store_plugin="fs", target_plugin="pg")]
    collector = archives_collector(client, NAMESPACE, ENVIRONMENT, BACKEND_NAME)
    labels = {"archive_status": "done", "store_plugin": "fs", "target_plugin": "pg"}

    first = collect(collector)
    second = collect(collector)

    assert sample_value(first, "test_namespace_archives_total", labels) == 1
    assert sample_value(second, "test_namespace_archives_total", labels) == 1
    assert sample_value(second, "test_namespace_archives_scrapes_total") == 2


def test_stale_labels_disappear(client):
    client.get_archives.return_value = [Archive(status="done", store_plugin="fs", target_plugin="pg")]
    collector = archives_collector(client, NAMESPACE, ENVIRONMENT, BACKEND_NAME)
    collect(collector)

    client.get_archives.return_value = [Archive(status="purged", store_plugin="s3", target_plugin="pg")]
    metrics = collect(collector)

    samples = family_samples(metrics, "test_namespace_archives_total")
    assert len(samples) == 1
    assert samples[0].labels["archive_status"] == "purged"


def test_fetch_error_records_scrape_error(client):
    client.get_archives.side_effect = ShieldAPIError("GET /v1/archives returned 500", 500)
    collector = archives_collector(client, NAMESPACE, ENVIRONMENT, BACKEND_NAME)

    metrics = collect(collector)

    assert "test_namespace_archives_total" not in family_names(metrics)
    assert sample_value(metrics, "test_namespace_archives_scrape_errors_total") == 1
    assert sample_value(metrics, "test_namespace_last_archives_scrape_error") == 1
    assert sample_value(metrics, "test_namespace_archives_scrapes_total") == 1


def test_error_flag_recovers_after_success(client):
    client.get_archives.side_effect = [ShieldAPIError("boom"), []]
    collector = archives_collector(client, NAMESPACE, ENVIRONMENT, BACKEND_NAME)

    collect(collector)
    metrics = collect(collector)

    assert sample_value(metrics, "test_namespace_last_archives_scrape_error") == 0
    assert sample_value(metrics, "test_namespace_archives_scrape_errors_total") == 1
    assert sample_value(metrics, "test_namespace_archives_scrapes_total") == 2


def test_health_metrics_emitted_last_in_order(client):
    collector = archives_collector(client, NAMESPACE, ENVIRONMENT, BACKEND_NAME)

    metrics = collect(collector)

    assert family_names(metrics) == [
        "test_namespace_archives_total",
        "test_namespace_archives_scrape_errors",
        "test_namespace_archives_scrapes",
        "test_namespace_last_archives_scrape_error",
        "test_namespace_last_archives_scrape_timestamp",
        "test_namespace_last_archives_scrape_duration_seconds",
    ]


def test_describe_is_stable_and_does_not_fetch(client):
    client.get_archives.side_effect = ShieldAPIError("boom")
    collector = archives_collector(client, NAMESPACE, ENVIRONMENT, BACKEND_NAME)

    first = [metric.name for metric in collector.describe()]
    collect(collector)
    second = [metric.name for metric in collector.describe()]

    assert first == second
    assert len(first) == 6
    assert client.get_archives.call_count == 1


# -- Jobs ---------------------------------------------------------------------


def jobs_fixture(client):
    client.get_jobs.return_value = [
        Job(name="job1", paused=True, store_plugin="fs", target_plugin="pg"),
        Job(name="job2", paused=False, store_plugin="fs", target_plugin="mysql"),
        Job(name="job3", paused=False, store_plugin="fs", target_plugin="mysql"),
    ]
    client.get_jobs_status.return_value = {
        "job1": JobHealth(name="job1", last_run=1500000000, next_run=1500003600, paused=True, status="done"),
        "job2": JobHealth(name="job2", last_run=1500000100, next_run=1500003700, paused=False, status="failed"),
    }


def test_jobs_totals_and_health(client):
    jobs_fixture(client)
    collector = jobs_collector(client, NAMESPACE, ENVIRONMENT, BACKEND_NAME)

    metrics = collect(collector)

    assert (
        sample_value(
            metrics,
            "test_namespace_jobs_total",
            {"job_paused": "true", "store_plugin": "fs", "target_plugin": "pg"},
        )
        == 1
    )
    assert (
        sample_value(
            metrics,
            "test_namespace_jobs_total",
            {"job_paused": "false", "store_plugin": "fs", "target_plugin": "mysql"},
        )
        == 2
    )
    assert sample_value(metrics, "test_namespace_job_last_run", {"job_name": "job1"}) == 1500000000
    assert sample_value(metrics, "test_namespace_job_next_run", {"job_name": "job2"}) == 1500003700
    assert sample_value(metrics, "test_namespace_job_status", {"job_name": "job1"}) == 5
    assert sample_value(metrics, "test_namespace_job_status", {"job_name": "job2"}) == 4
    assert sample_value(metrics, "test_namespace_job_paused", {"job_name": "job1"}) == 1
    assert sample_value(metrics, "test_namespace_job_paused", {"job_name": "job2"}) == 0
    assert sample_value(metrics, "test_namespace_last_jobs_scrape_error") == 0


def test_jobs_status_not_implemented_is_skipped(client):
    jobs_fixture(client)
    client.get_jobs_status.side_effect = ShieldNotImplementedError("not implemented", 501)
    collector = jobs_collector(client, NAMESPACE, ENVIRONMENT, BACKEND_NAME)

    metrics = collect(collector)

    names = family_names(metrics)
    assert "test_namespace_jobs_total" in names
    assert "test_namespace_job_last_run" not in names
    assert "test_namespace_job_status" not in names
    assert sample_value(metrics, "test_namespace_jobs_scrape_errors_total") == 0
    assert sample_value(metrics, "test_namespace_last_jobs_scrape_error") == 0


def test_jobs_status_error_still_emits_totals(client):
    jobs_fixture(client)
    client.get_jobs_status.side_effect = ShieldAPIError("GET /v1/status/jobs returned 500", 500)
    collector = jobs_collector(client, NAMESPACE, ENVIRONMENT, BACKEND_NAME)

    metrics = collect(collector)

    names = family_names(metrics)
    assert "test_namespace_jobs_total" in names
    assert "test_namespace_job_paused" not in names
    assert sample_value(metrics, "test_namespace_jobs_scrape_errors_total") == 1
    assert sample_value(metrics, "test_namespace_last_jobs_scrape_error") == 1


def test_jobs_list_error_skips_status_fetch(client):
    client.get_jobs.side_effect = ShieldAPIError("boom", 500)
    collector = jobs_collector(client, NAMESPACE, ENVIRONMENT, BACKEND_NAME)

    metrics = collect(collector)

    assert "test_namespace_jobs_total" not in family_names(metrics)
    assert sample_value(metrics, "test_namespace_last_jobs_scrape_error") == 1
    client.get_jobs_status.assert_not_called()


def test_jobs_describe_includes_health_families(client):
    collector = jobs_collector(client, NAMESPACE, ENVIRONMENT, BACKEND_NAME)

    names = [metric.name for metric in collector.describe()]

    assert names[:5] == [
        "test_namespace_job_last_run",
        "test_namespace_job_next_run",
        "test_namespace_job_status",
        "test_namespace_job_paused",
        "test_namespace_jobs_total",
    ]
    assert len(names) == 10


def test_job_status_codes():
    assert job_status_code("pending") == 1
    assert job_status_code("running") == 2
    assert job_status_code("canceled") == 3
    assert job_status_code("failed") == 4
    assert job_status_code("done") == 5
    assert job_status_code("whatever") == 0


# -- Scalar collectors --------------------------------------------------------


def test_retention_policies_total(client):
    client.get_retention_policies.return_value = [RetentionPolicy(name="short"), RetentionPolicy(name="long")]
    collector = retention_policies_collector(client, NAMESPACE, ENVIRONMENT, BACKEND_NAME)

    metrics = collect(collector)

    assert sample_value(metrics, "test_namespace_retention_policies_total") == 2
    assert sample_value(metrics, "test_namespace_retention_policies_scrapes_total") == 1
    assert sample_value(metrics, "test_namespace_last_retention_policies_scrape_error") == 0


def test_schedules_total(client):
    client.get_schedules.return_value = [Schedule(name="daily"), Schedule(name="weekly"), Schedule(name="hourly")]
    collector = schedules_collector(client, NAMESPACE, ENVIRONMENT, BACKEND_NAME)

    metrics = collect(collector)

    assert sample_value(metrics, "test_namespace_schedules_total") == 3


def test_schedules_backend_error(client):
    client.get_schedules.side_effect = ShieldAPIError("GET /v1/schedules returned 500", 500)
    collector = schedules_collector(client, NAMESPACE, ENVIRONMENT, BACKEND_NAME)

    metrics = collect(collector)

    assert sample_value(metrics, "test_namespace_schedules_scrape_errors_total") == 1
    assert sample_value(metrics, "test_namespace_last_schedules_scrape_error") == 1
    assert "test_namespace_schedules_total" not in family_names(metrics)


def test_status_queues(client):
    client.get_internal_status.return_value = InternalStatus(
        pending_tasks=[{}, {}],
        running_tasks=[{}],
        schedule_queue=[{}, {}, {}],
        run_queue=[],
    )
    collector = status_collector(client, NAMESPACE, ENVIRONMENT, BACKEND_NAME)

    metrics = collect(collector)

    assert sample_value(metrics, "test_namespace_status_pending_tasks_total") == 2
    assert sample_value(metrics, "test_namespace_status_running_tasks_total") == 1
    assert sample_value(metrics, "test_namespace_status_schedule_queue_total") == 3
    assert sample_value(metrics, "test_namespace_status_run_queue_total") == 0
    assert sample_value(metrics, "test_namespace_status_scrapes_total") == 1
    assert sample_value(metrics, "test_namespace_last_status_scrape_error") == 0


# -- Plugin collectors --------------------------------------------------------


def test_stores_empty_list(client):
    collector = stores_collector(client, NAMESPACE, ENVIRONMENT, BACKEND_NAME)

    metrics = collect(collector)

    assert family_samples(metrics, "test_namespace_stores_total") == []
    assert sample_value(metrics, "test_namespace_stores_scrapes_total") == 1
    assert sample_value(metrics, "test_namespace_last_stores_scrape_error") == 0


def test_stores_by_plugin(client):
    client.get_stores.return_value = [Store(plugin="fs"), Store(plugin="s3"), Store(plugin="fs")]
    collector = stores_collector(client, NAMESPACE, ENVIRONMENT, BACKEND_NAME)

    metrics = collect(collector)

    assert sample_value(metrics, "test_namespace_stores_total", {"store_plugin": "fs"}) == 2
    assert sample_value(metrics, "test_namespace_stores_total", {"store_plugin": "s3"}) == 1


def test_targets_by_plugin(client):
    client.get_targets.return_value = [Target(plugin="postgres"), Target(plugin="redis")]
    collector = targets_collector(client, NAMESPACE, ENVIRONMENT, BACKEND_NAME)

    metrics = collect(collector)

    assert sample_value(metrics, "test_namespace_targets_total", {"target_plugin": "postgres"}) == 1
    assert sample_value(metrics, "test_namespace_targets_total", {"target_plugin": "redis"}) == 1
    assert sample_value(metrics, "test_namespace_targets_scrape_errors_total") == 0


# -- Tasks --------------------------------------------------------------------


def test_tasks_totals_and_durations(client):
    client.get_tasks.return_value = [
        Task(op="backup", status="done", started_at=1000, stopped_at=1060),
        Task(op="backup", status="done", started_at=2000, stopped_at=2030),
        Task(op="restore", status="failed", started_at=3000, stopped_at=3010),
        Task(op="backup", status="running", started_at=4000, stopped_at=0),
    ]
    collector = tasks_collector(client, NAMESPACE, ENVIRONMENT, BACKEND_NAME)

    metrics = collect(collector)

    done = {"task_operation": "backup", "task_status": "done"}
    assert sample_value(metrics, "test_namespace_tasks_total", done) == 2
    assert sample_value(metrics, "test_namespace_tasks_duration_seconds_count", done) == 2
    assert sample_value(metrics, "test_namespace_tasks_duration_seconds_sum", done) == 90

    running = {"task_operation": "backup", "task_status": "running"}
    assert sample_value(metrics, "test_namespace_tasks_total", running) == 1
    assert sample_value(metrics, "test_namespace_tasks_duration_seconds_count", running) is None


def test_tasks_invalid_spans_are_dropped(client):
    client.get_tasks.return_value = [
        Task(op="backup", status="done", started_at=2000, stopped_at=1000),
        Task(op="backup", status="done", started_at=0, stopped_at=1000),
    ]
    collector = tasks_collector(client, NAMESPACE, ENVIRONMENT, BACKEND_NAME)

    metrics = collect(collector)

    labels = {"task_operation": "backup", "task_status": "done"}
    assert sample_value(metrics, "test_namespace_tasks_total", labels) == 2
    assert family_samples(metrics, "test_namespace_tasks_duration_seconds") == []
    assert sample_value(metrics, "test_namespace_last_tasks_scrape_error") == 0
