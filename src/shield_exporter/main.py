import asyncio
import contextlib
import logging
import sys

from fastapi import APIRouter, FastAPI
from prometheus_client import CollectorRegistry
from uvicorn import Config, Server

from shield_exporter.api.routes import add_metrics_route, router
from shield_exporter.client import ShieldAPIError, ShieldClient
from shield_exporter.config.logging import setup_logging
from shield_exporter.config.settings import Settings
from shield_exporter.core.filters import ConfigurationError
from shield_exporter.core.registry import build_registry, exporter_version

logger = logging.getLogger(__name__)


def create_app(settings: Settings, registry: CollectorRegistry) -> FastAPI:
    """Build the FastAPI app serving the landing page and the metrics endpoint."""
    app = FastAPI(title="Shield Exporter", docs_url=None, redoc_url=None, openapi_url=None)
    app.include_router(router)

    metrics_router = APIRouter()
    add_metrics_route(metrics_router, settings.web.telemetry_path)
    app.include_router(metrics_router)

    app.state.registry = registry
    app.state.web_settings = settings.web
    return app


def bootstrap(settings: Settings) -> tuple[ShieldClient, CollectorRegistry]:
    """
    Connect to the SHIELD backend and register the enabled collectors.

    Raises:
        ShieldAPIError: the backend status could not be fetched
        ConfigurationError: the collectors filter is invalid
    """
    client = ShieldClient(
        base_url=settings.shield.backend_url,
        username=settings.shield.username,
        password=settings.shield.password.get_secret_value(),
        skip_ssl_validation=settings.shield.skip_ssl_validation,
        timeout=settings.shield.timeout,
    )

    try:
        shield_status = client.get_status()
    except ShieldAPIError:
        client.close()
        raise
    logger.info(f"Collecting data from Shield `{shield_status.name}' version {shield_status.version}")

    try:
        registry = build_registry(settings, client, shield_status.name)
    except ConfigurationError:
        client.close()
        raise
    return client, registry


async def main(settings: Settings) -> int:
    """
    Main exporter entry point.
    Connects to SHIELD, registers collectors and serves metrics until stopped.
    """
    logger.info(f"Starting shield_exporter (version={exporter_version()})")

    try:
        client, registry = bootstrap(settings)
    except ShieldAPIError as e:
        logger.error(f"Error while getting Shield Status: {e}")
        return 1
    except ConfigurationError as e:
        logger.error(str(e))
        return 1

    app = create_app(settings, registry)

    web = settings.web
    config = Config(
        app,
        host=web.host,
        port=web.port,
        log_config=None,
        ssl_certfile=web.tls_certfile if web.tls_enabled else None,
        ssl_keyfile=web.tls_keyfile if web.tls_enabled else None,
    )
    server = Server(config)

    scheme = "https" if web.tls_enabled else "http"
    logger.info(f"Listening on {scheme}://{web.host}:{web.port}{web.telemetry_path}")

    try:
        # uvicorn installs its own SIGINT/SIGTERM handlers for graceful shutdown
        await server.serve()
    finally:
        client.close()
        logger.info("Shutdown complete.")
    return 0


def run() -> None:
    settings = Settings.from_args(sys.argv[1:])

    if settings.version:
        print(f"shield_exporter, version {exporter_version()}")
        sys.exit(0)

    setup_logging(log_level=settings.log_level, log_file=settings.log_file)

    exit_code = 0
    with contextlib.suppress(KeyboardInterrupt):
        exit_code = asyncio.run(main(settings))
    sys.exit(exit_code)


if __name__ == "__main__":
    run()
