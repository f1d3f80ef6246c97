import threading
import time
from collections import defaultdict
from collections.abc import Callable, Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from prometheus_client.metrics_core import (
    CounterMetricFamily,
    GaugeMetricFamily,
    Metric,
    SummaryMetricFamily,
)
from prometheus_client.registry import Collector

from shield_exporter.client import ShieldAPIError
from shield_exporter.config.logging import get_logger

logger = get_logger(__name__)

LabelValues = tuple[str, ...]


class MetricType(str, Enum):
    COUNTER = "counter"
    GAUGE = "gauge"
    SUMMARY = "summary"


@dataclass(frozen=True, eq=False)
class MetricDescriptor:
    """
    Identity of a metric family.

    Constant labels are baked in at construction; every sample must supply a
    value for each variable label, in order.
    """

    namespace: str
    subsystem: str
    name: str
    help: str
    constant_labels: dict[str, str] = field(default_factory=dict)
    variable_label_names: tuple[str, ...] = ()
    type: MetricType = MetricType.GAUGE

    @property
    def fqname(self) -> str:
        return "_".join(part for part in (self.namespace, self.subsystem, self.name) if part)

    @property
    def label_names(self) -> list[str]:
        return [*self.constant_labels, *self.variable_label_names]

    def _key(self) -> tuple:
        return (self.namespace, self.subsystem, self.name, frozenset(self.label_names))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MetricDescriptor):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def family(self) -> Metric:
        """Build an empty metric family for this descriptor."""
        if self.type is MetricType.COUNTER:
            return CounterMetricFamily(self.fqname, self.help, labels=self.label_names)
        if self.type is MetricType.SUMMARY:
            return SummaryMetricFamily(self.fqname, self.help, labels=self.label_names)
        return GaugeMetricFamily(self.fqname, self.help, labels=self.label_names)

    def label_values(self, values: Sequence[str]) -> list[str]:
        if len(values) != len(self.variable_label_names):
            raise ValueError(
                f"{self.fqname} expects labels {list(self.variable_label_names)}, got {len(values)} values"
            )
        return [*self.constant_labels.values(), *(str(v) for v in values)]

    def build(self, values: dict[LabelValues, Any]) -> Metric:
        """Build a populated metric family from a label tuple -> value mapping."""
        metric = self.family()
        for labels, value in values.items():
            if self.type is MetricType.SUMMARY:
                count, total = value
                metric.add_metric(self.label_values(labels), count_value=count, sum_value=total)
            else:
                metric.add_metric(self.label_values(labels), value)
        return metric


@dataclass
class ScrapeHealth:
    """Per-collector scrape bookkeeping. Never reset."""

    scrapes_total: int = 0
    scrape_errors_total: int = 0
    last_error: int = 0
    last_timestamp: float = 0.0
    last_duration: float = 0.0

    def record(self, failed: bool, began: float) -> None:
        """Account for one finished scrape that started at `began` (perf_counter)."""
        if failed:
            self.scrape_errors_total += 1
        self.last_error = 1 if failed else 0
        self.scrapes_total += 1
        self.last_timestamp = float(int(time.time()))
        self.last_duration = time.perf_counter() - began


class Aggregation(str, Enum):
    COUNT = "count"  # one per record, keyed by labels
    SET = "set"  # per-record value keyed by labels, last record wins
    SIZE = "size"  # scalar computed from the whole payload
    OBSERVE = "observe"  # summary of per-record observations, keyed by labels


@dataclass(frozen=True)
class FamilySpec:
    """How one resource family is derived from a fetched payload."""

    name: str
    help: str
    aggregation: Aggregation
    label_names: tuple[str, ...] = ()
    labels: Callable[[Any], LabelValues] | None = None
    value: Callable[[Any], float | None] | None = None
    subsystem: str | None = None

    @property
    def metric_type(self) -> MetricType:
        return MetricType.SUMMARY if self.aggregation is Aggregation.OBSERVE else MetricType.GAUGE


class FamilyAggregate:
    """Label tuple -> value mapping for one family, rebuilt every scrape."""

    def __init__(self, spec: FamilySpec, descriptor: MetricDescriptor):
        self.spec = spec
        self.descriptor = descriptor
        self.values: dict[LabelValues, Any] = {}

    def clear(self) -> None:
        self.values = {}

    def aggregate(self, payload: Any) -> None:
        spec = self.spec
        if spec.aggregation is Aggregation.SIZE:
            self.values = {(): float(spec.value(payload) if spec.value else len(payload))}
            return

        values: dict[LabelValues, Any] = defaultdict(float) if spec.aggregation is Aggregation.COUNT else {}
        for record in payload:
            labels = spec.labels(record) if spec.labels else ()
            if spec.aggregation is Aggregation.COUNT:
                values[labels] += 1
                continue
            if spec.aggregation is Aggregation.SET:
                values[labels] = float(spec.value(record))
                continue
            observation = spec.value(record) if spec.value else None
            if observation is None:
                continue
            count, total = values.get(labels, (0, 0.0))
            values[labels] = (count + 1, total + observation)
        self.values = dict(values)

    def metric(self) -> Metric:
        return self.descriptor.build(self.values)


class ResourceCollector(Collector):
    """
    Collects one SHIELD resource kind on every scrape.

    The collector is configured with a fetch operation and the families it
    derives from the fetched payload. Each scrape clears the previous
    aggregation, fetches once, and on success emits the resource families.
    Health families are always emitted afterwards: scrape errors, scrapes,
    last error, last timestamp and last duration, in that order.
    """

    def __init__(
        self,
        kind: str,
        resource: str,
        noun: str,
        fetch: Callable[[], Any],
        families: Iterable[FamilySpec],
        namespace: str,
        environment: str,
        backend_name: str,
    ):
        """
        Args:
            kind: Collector identifier used by the filter (e.g. "Archives")
            resource: Metric subsystem for the health families (e.g. "archives")
            noun: Human readable name used in help texts (e.g. "Archive")
            fetch: Callable returning the payload; raises ShieldAPIError on failure
            families: Resource families derived from the payload
            namespace: Metrics namespace
            environment: Value of the environment label
            backend_name: Value of the backend_name label
        """
        self.kind = kind
        self.resource = resource
        self.noun = noun
        self.fetch = fetch
        self.namespace = namespace
        self.constant_labels = {"environment": environment, "backend_name": backend_name}
        self.health = ScrapeHealth()
        self._lock = threading.Lock()

        self.aggregates = [
            FamilyAggregate(
                spec,
                self.descriptor(spec.subsystem or resource, spec.name, spec.help, spec.label_names, spec.metric_type),
            )
            for spec in families
        ]

        self.scrapes_total_desc = self.descriptor(
            resource, "scrapes_total", f"Total number of scrapes for Shield {self._plural}.", type=MetricType.COUNTER
        )
        self.scrape_errors_total_desc = self.descriptor(
            resource,
            "scrape_errors_total",
            f"Total number of scrape errors of Shield {self._plural}.",
            type=MetricType.COUNTER,
        )
        self.last_error_desc = self.descriptor(
            "",
            f"last_{resource}_scrape_error",
            f"Whether the last scrape of {noun} metrics from Shield resulted in an error (1 for error, 0 for success).",
        )
        self.last_timestamp_desc = self.descriptor(
            "",
            f"last_{resource}_scrape_timestamp",
            f"Number of seconds since 1970 since last scrape of {noun} metrics from Shield.",
        )
        self.last_duration_desc = self.descriptor(
            "",
            f"last_{resource}_scrape_duration_seconds",
            f"Duration of the last scrape of {noun} metrics from Shield.",
        )

    @property
    def _plural(self) -> str:
        return self.noun if self.noun.endswith("s") else f"{self.noun}s"

    def descriptor(
        self,
        subsystem: str,
        name: str,
        help: str,
        label_names: Sequence[str] = (),
        type: MetricType = MetricType.GAUGE,
    ) -> MetricDescriptor:
        return MetricDescriptor(
            namespace=self.namespace,
            subsystem=subsystem,
            name=name,
            help=help,
            constant_labels=dict(self.constant_labels),
            variable_label_names=tuple(label_names),
            type=type,
        )

    def descriptors(self) -> list[MetricDescriptor]:
        """Every family this collector can ever emit."""
        return [
            *(aggregate.descriptor for aggregate in self.aggregates),
            self.scrapes_total_desc,
            self.scrape_errors_total_desc,
            self.last_error_desc,
            self.last_timestamp_desc,
            self.last_duration_desc,
        ]

    def describe(self) -> list[Metric]:
        return [desc.family() for desc in self.descriptors()]

    def collect(self) -> Iterator[Metric]:
        with self._lock:
            metrics = self.scrape()
        yield from metrics

    def scrape(self) -> list[Metric]:
        """Run one scrape. Callers must hold the collector lock."""
        began = time.perf_counter()
        metrics: list[Metric] = []

        failed = False
        try:
            self.report(metrics)
        except ShieldAPIError as e:
            logger.error(f"Error while getting Shield {self._plural}: {e}")
            failed = True

        self.health.record(failed, began)
        metrics.extend(self.health_metrics())
        return metrics

    def report(self, metrics: list[Metric]) -> None:
        """
        Fetch and aggregate resource families into `metrics`.

        Families appended before a ShieldAPIError is raised are still emitted.
        """
        for aggregate in self.aggregates:
            aggregate.clear()

        payload = self.fetch()

        for aggregate in self.aggregates:
            aggregate.aggregate(payload)
        metrics.extend(aggregate.metric() for aggregate in self.aggregates)

    def health_metrics(self) -> list[Metric]:
        health = self.health
        return [
            self.scrape_errors_total_desc.build({(): health.scrape_errors_total}),
            self.scrapes_total_desc.build({(): health.scrapes_total}),
            self.last_error_desc.build({(): health.last_error}),
            self.last_timestamp_desc.build({(): health.last_timestamp}),
            self.last_duration_desc.build({(): health.last_duration}),
        ]
