"""Materialized view admin endpoints.

Called by operators and automation, never by end users. Every route
requires the internal access token.
"""

from fastapi import APIRouter, Depends, HTTPException, Query

from mviews.api.deps import (
    get_view_service,
    require_internal_access,
    validated_model_name,
    validated_tenant_code,
)
from mviews.schemas.views import AuditReport, BuildReport, RefreshAck, SchedulerStatus
from mviews.services.view_service import MaterializedViewService

router = APIRouter(dependencies=[Depends(require_internal_access)])


@router.post("/build", response_model=BuildReport)
async def trigger_build(
    tenant_code: str | None = Query(None),
    service: MaterializedViewService = Depends(get_view_service),
):
    """Build or rebuild every view of one tenant, or of all tenants."""
    result = await service.trigger_build(validated_tenant_code(tenant_code))
    return BuildReport.model_validate(result)


@router.post("/refresh", response_model=RefreshAck)
async def trigger_refresh(
    tenant_code: str | None = Query(None),
    model_name: str | None = Query(None),
    service: MaterializedViewService = Depends(get_view_service),
):
    """Refresh one view now, or (re)start periodic refresh schedulers."""
    result = await service.trigger_refresh(
        validated_tenant_code(tenant_code), validated_model_name(model_name)
    )
    return RefreshAck.model_validate(result)


@router.post("/audit", response_model=AuditReport)
async def audit_and_reconcile(
    service: MaterializedViewService = Depends(get_view_service),
):
    """Build only the tenants missing at least one view."""
    result = await service.audit_and_reconcile()
    return AuditReport.model_validate(result)


@router.get("/schedulers", response_model=list[SchedulerStatus])
async def list_schedulers(
    service: MaterializedViewService = Depends(get_view_service),
):
    return service.schedulers.status()


@router.delete("/schedulers/{tenant_code}", status_code=204)
async def stop_scheduler(
    tenant_code: str,
    service: MaterializedViewService = Depends(get_view_service),
):
    if not await service.schedulers.stop(validated_tenant_code(tenant_code)):
        raise HTTPException(status_code=404, detail="No scheduler running for tenant")
