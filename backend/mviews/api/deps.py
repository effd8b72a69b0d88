"""Dependency injection for FastAPI routes.

All services and sessions are provided via Depends() from this module.
Route handlers never instantiate services directly.
"""

from fastapi import HTTPException, Request, status

from mviews.core.auth import require_internal_access  # noqa: F401
from mviews.core.sql import InvalidIdentifierError, validate_tenant_code
from mviews.services.model_registry import model_registry
from mviews.services.view_service import MaterializedViewService


async def get_view_service(request: Request) -> MaterializedViewService:
    """Return the view service (and its running schedulers) from app state."""
    return request.app.state.view_service


def validated_tenant_code(tenant_code: str | None) -> str | None:
    if tenant_code is None:
        return None
    try:
        return validate_tenant_code(tenant_code)
    except InvalidIdentifierError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        ) from exc


def validated_model_name(model_name: str | None) -> str | None:
    if model_name is not None and model_name not in model_registry:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Unknown model: {model_name!r}",
        )
    return model_name
