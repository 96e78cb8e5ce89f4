import logging
from typing import Any, Optional

from fastapi import Depends, Header, HTTPException, Request, status
from streamsense_recommendation.orchestrator import valid_user_id

log = logging.getLogger(__name__)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def require_bearer_token(authorization: Optional[str] = Header(None)) -> str:
    if not authorization:
        raise _unauthorized("Missing Authorization header")
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise _unauthorized("Invalid Authorization header format")
    return token


def get_auth_client(request: Request) -> Any:
    """Service-scoped Supabase client; only its GoTrue half is used here."""
    client = getattr(request.app.state, "supabase", None)
    if client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Identity provider not configured",
        )
    return client


def _user_id_from(resp: Any) -> str | None:
    user = getattr(resp, "user", None) or getattr(resp, "data", None)
    if user is None:
        return None
    if isinstance(user, dict):
        return user.get("id")
    return getattr(user, "id", None)


def get_current_user_id(
    token: str = Depends(require_bearer_token),
    client=Depends(get_auth_client),
) -> str:
    """Resolve the caller's user id from their access token via GoTrue."""
    try:
        resp = client.auth.get_user(token)
    except Exception as exc:
        log.info("token rejected by identity provider: %s", exc)
        raise _unauthorized("Invalid or expired token") from exc

    user_id = _user_id_from(resp)
    if not user_id:
        raise _unauthorized("Invalid or expired token")
    user_id = str(user_id)
    # ids feed per-user state keys; refuse anything the engine would reject
    if not valid_user_id(user_id):
        raise _unauthorized("Invalid user in token")
    return user_id
