import threading
from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor
from importlib.metadata import PackageNotFoundError, version

from prometheus_client import CollectorRegistry, Info
from prometheus_client.metrics_core import Metric
from prometheus_client.registry import Collector

from shield_exporter.client import ShieldClient
from shield_exporter.config.logging import get_logger
from shield_exporter.config.settings import Settings
from shield_exporter.core.collectors import COLLECTOR_FACTORIES
from shield_exporter.core.filters import SUPPORTED_COLLECTORS, CollectorsFilter, parse_collectors_filter

logger = get_logger(__name__)


def exporter_version() -> str:
    try:
        return version("shield-exporter")
    except PackageNotFoundError:
        return "unknown"


class ScrapeRegistry(CollectorRegistry):
    """
    Collector registry that scrapes its collectors concurrently.

    Collectors are registered once at startup. On every scrape each collector
    runs on its own worker thread; results are yielded per collector in
    registration order.
    """

    def __init__(self, max_workers: int | None = None):
        super().__init__(auto_describe=True)
        self.max_workers = max_workers
        self._ordered: list[Collector] = []
        self._ordered_lock = threading.Lock()

    def register(self, collector: Collector) -> None:
        super().register(collector)
        with self._ordered_lock:
            self._ordered.append(collector)

    def unregister(self, collector: Collector) -> None:
        raise RuntimeError("collectors cannot be removed once registered")

    @property
    def collectors(self) -> list[Collector]:
        with self._ordered_lock:
            return list(self._ordered)

    def collect(self) -> Iterator[Metric]:
        collectors = self.collectors
        if not collectors:
            return

        workers = self.max_workers or len(collectors)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="scrape") as pool:
            futures = [pool.submit(lambda c: list(c.collect()), collector) for collector in collectors]
            for future in futures:
                yield from future.result()


def build_registry(
    settings: Settings,
    client: ShieldClient,
    backend_name: str,
    collectors_filter: CollectorsFilter | None = None,
) -> ScrapeRegistry:
    """
    Create the registry with every enabled collector.

    Raises:
        UnsupportedCollectorError: the configured filter names an unknown collector
    """
    if collectors_filter is None:
        collectors_filter = parse_collectors_filter(settings.filter.collectors)

    namespace = settings.metrics.namespace
    environment = settings.metrics.environment

    registry = ScrapeRegistry()

    build_info = Info(
        "exporter_build",
        "Shield exporter build information.",
        namespace=namespace,
        registry=registry,
    )
    build_info.info({"version": exporter_version()})

    for kind in SUPPORTED_COLLECTORS:
        if not collectors_filter.enabled(kind):
            logger.info(f"{kind} collector disabled")
            continue
        collector = COLLECTOR_FACTORIES[kind](client, namespace, environment, backend_name)
        registry.register(collector)
        logger.info(f"{kind} collector enabled")

    return registry
