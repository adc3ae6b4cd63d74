"""Health check endpoints.

- /healthz: Liveness probe (is the process alive?)
- /readyz: Readiness probe (is the relay ready to accept clients?)
- /metrics: Prometheus metrics endpoint
"""

from typing import Any

from fastapi import APIRouter, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter(tags=["health"])


# Health status tracking
_ready: bool = False
_components: dict[str, bool] = {
    "session_registry": False,
    "relay_router": False,
    "telephony": False,
}

# Telephony is only critical when bridging is enabled
_critical: set[str] = {"session_registry", "relay_router"}


def set_ready(ready: bool) -> None:
    """Set overall readiness status."""
    global _ready
    _ready = ready


def set_component_health(component: str, healthy: bool, critical: bool | None = None) -> None:
    """Set health status for a specific component."""
    if component not in _components:
        return
    _components[component] = healthy
    if critical is True:
        _critical.add(component)
    elif critical is False:
        _critical.discard(component)


def get_component_health() -> dict[str, bool]:
    """Get health status of all components."""
    return _components.copy()


def reset_health() -> None:
    """Return to the not-ready startup state."""
    global _ready
    _ready = False
    for component in _components:
        _components[component] = False
    _critical.clear()
    _critical.update({"session_registry", "relay_router"})


@router.get("/healthz", response_model=dict[str, str])
async def healthz() -> dict[str, str]:
    """Liveness probe.

    Returns 200 if the process is alive.
    """
    return {"status": "alive"}


@router.get("/readyz")
async def readyz(response: Response) -> dict[str, Any]:
    """Readiness probe.

    Returns 200 if the relay can accept clients.
    Returns 503 if any critical component is unhealthy.
    """
    all_critical_ready = all(_components.get(c, False) for c in _critical)

    if _ready and all_critical_ready:
        return {
            "status": "ready",
            "components": _components,
        }

    response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return {
        "status": "not_ready",
        "components": _components,
    }


@router.get("/metrics")
async def metrics() -> Response:
    """Prometheus scrape endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
