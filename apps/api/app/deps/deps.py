from typing import Any, TYPE_CHECKING, cast

from fastapi import HTTPException, Request, status

if TYPE_CHECKING:
    from streamsense_logging.rec_logger import TelemetryLogger
    from streamsense_recommendation.orchestrator import RankingOrchestrator
    from streamsense_user.affinity.affinity_service import AffinityTracker
else:
    TelemetryLogger = Any  # type: ignore
    RankingOrchestrator = Any  # type: ignore
    AffinityTracker = Any  # type: ignore


def _get_state_attr(request: Request, name: str, error_detail: str) -> Any:
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=error_detail,
        )
    return value


def get_settings(request: Request) -> Any:
    return _get_state_attr(request, "settings", "Settings not initialized")


def get_orchestrator(request: Request) -> "RankingOrchestrator":
    return cast(
        "RankingOrchestrator",
        _get_state_attr(request, "orchestrator", "Ranking engine not initialized"),
    )


def get_affinity_tracker(request: Request) -> "AffinityTracker":
    return cast(
        "AffinityTracker",
        _get_state_attr(request, "affinity", "Affinity tracker not initialized"),
    )


def get_logger(request: Request) -> "TelemetryLogger":
    return cast(
        "TelemetryLogger",
        _get_state_attr(request, "telemetry", "Telemetry logger not initialized"),
    )
