import secrets

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import HTMLResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest

from shield_exporter.config.logging import get_logger
from shield_exporter.config.settings import WebSettings

logger = get_logger(__name__)

router = APIRouter()

basic_auth = HTTPBasic(realm="metrics", auto_error=False)

INDEX_PAGE = """<html>
<head><title>Shield Exporter</title></head>
<body>
<h1>Shield Exporter</h1>
<p><a href='{telemetry_path}'>Metrics</a></p>
</body>
</html>
"""


def get_registry(request: Request) -> CollectorRegistry:
    """Helper to get the collector registry from app state."""
    return request.app.state.registry


def get_web_settings(request: Request) -> WebSettings:
    """Helper to get the web settings from app state."""
    return request.app.state.web_settings


def verify_credentials(
    request: Request,
    credentials: HTTPBasicCredentials | None = Depends(basic_auth),
) -> None:
    """
    Enforce basic auth on the metrics endpoint when it is configured.
    """
    web = get_web_settings(request)
    if not web.auth_enabled:
        return

    valid = credentials is not None and (
        secrets.compare_digest(credentials.username.encode(), web.auth_username.encode())
        & secrets.compare_digest(credentials.password.encode(), web.auth_password.get_secret_value().encode())
    )
    if not valid:
        client_host = request.client.host if request.client else "unknown"
        logger.error(f"Invalid HTTP auth from `{client_host}`")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
            headers={"WWW-Authenticate": 'Basic realm="metrics"'},
        )


@router.get("/", response_class=HTMLResponse)
async def index(request: Request) -> str:
    """
    Landing page linking to the metrics endpoint.
    """
    web = get_web_settings(request)
    return INDEX_PAGE.format(telemetry_path=web.telemetry_path)


def get_metrics(request: Request) -> Response:
    """
    Get Prometheus metrics.

    Declared sync so that the blocking backend calls run in the threadpool.
    """
    registry = get_registry(request)
    return Response(content=generate_latest(registry), media_type=CONTENT_TYPE_LATEST)


def add_metrics_route(target: APIRouter, telemetry_path: str) -> None:
    """Mount the metrics endpoint, guarded by basic auth, at the configured path."""
    target.add_api_route(
        telemetry_path,
        get_metrics,
        methods=["GET"],
        dependencies=[Depends(verify_credentials)],
        response_class=Response,
    )
