"""Pydantic schemas for the materialized view admin endpoints."""

from pydantic import BaseModel

from mviews.services.refresh_scheduler import RefreshOutcome


class FieldIssueResponse(BaseModel):
    field_name: str
    reason: str
    detail: str = ""

    model_config = {"from_attributes": True}


class IndexIssueResponse(BaseModel):
    index_name: str
    kind: str
    error: str

    model_config = {"from_attributes": True}


class ModelBuildReport(BaseModel):
    tenant_code: str
    model_name: str
    status: str
    view_name: str | None = None
    stage: str | None = None
    error: str | None = None
    skipped_fields: list[FieldIssueResponse] = []
    index_issues: list[IndexIssueResponse] = []
    refresh: RefreshOutcome | None = None
    duration_seconds: float = 0.0

    model_config = {"from_attributes": True}


class TenantBuildReport(BaseModel):
    tenant_code: str
    ok: bool
    error: str | None = None
    models: list[ModelBuildReport] = []

    model_config = {"from_attributes": True}


class BuildReport(BaseModel):
    tenants: list[TenantBuildReport]

    model_config = {"from_attributes": True}


class RefreshAck(BaseModel):
    mode: str
    tenant_code: str | None = None
    model_name: str | None = None
    outcomes: dict[str, RefreshOutcome] = {}
    schedulers_started: list[str] = []

    model_config = {"from_attributes": True}


class AuditReport(BaseModel):
    tenants_built: list[str]
    fallback: bool = False
    results: list[TenantBuildReport] = []

    model_config = {"from_attributes": True}


class SchedulerStatus(BaseModel):
    tenant_code: str
    running: bool
    tick_interval: float
    inflight: int
    views: list[str]
