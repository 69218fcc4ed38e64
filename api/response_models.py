"""
Shared Pydantic request/response models for the performance API.

These models give FastAPI the type information it needs to generate
accurate OpenAPI schemas and to reject malformed bodies with a 422.

Usage:
    from api.response_models import PerformanceResponse, AggregateRequest

    @router.post("/aggregate", response_model=PerformanceResponse)
    def aggregate(body: AggregateRequest): ...
"""

from typing import Any

from pydantic import BaseModel, Field, model_validator

from command_center.aggregation import (
    AggregationLevel,
    PerformanceDomain,
    PerformanceWeights,
    SnapshotFrequency,
)

# ==== Envelope ====
# Shape: {status, data, computed_at, params, error?, error_code?}


class PerformanceResponse(BaseModel):
    """Standard performance endpoint envelope."""

    status: str = Field(description="ok or error")
    data: Any = Field(default=None, description="Response payload")
    computed_at: str = Field(description="ISO timestamp of computation")
    params: dict[str, Any] = Field(default_factory=dict, description="Echo of request params")
    error: str | None = Field(default=None, description="Error message if status=error")
    error_code: str | None = Field(default=None, description="Error code if status=error")


# ==== Requests ====


class WeightsModel(BaseModel):
    """Domain weights; must sum to 1.0."""

    strategy: float = Field(..., ge=0.0, le=1.0)
    okr: float = Field(..., ge=0.0, le=1.0)
    kpi: float = Field(..., ge=0.0, le=1.0)

    def to_weights(self) -> PerformanceWeights:
        return PerformanceWeights(self.strategy, self.okr, self.kpi)


class PeriodFields(BaseModel):
    company_id: str = Field(..., min_length=1)
    fiscal_year: int = Field(..., ge=2000, le=2100, description="Fiscal year (starts July 1)")
    quarter: int | None = Field(default=None, ge=1, le=4, description="Fiscal quarter")

    def params(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)


class AggregateRequest(PeriodFields):
    """Request to aggregate one entity."""

    level: AggregationLevel
    entity_id: str = Field(..., min_length=1)
    entity_name: str = Field(..., min_length=1)
    month: int | None = Field(default=None, ge=1, le=12, description="Calendar month")
    weights: WeightsModel | None = None
    include_children: bool = False
    actor_id: str = Field(default="api", description="Who requested the calculation")
    save: bool = Field(default=False, description="Persist the result after computing")

    @model_validator(mode="after")
    def _quarter_or_month(self):
        if self.quarter is not None and self.month is not None:
            raise ValueError("Specify at most one of quarter or month")
        return self


class CompareRequest(PeriodFields):
    """Request to rank entities on one domain."""

    entity_ids: list[str] = Field(..., min_length=2)
    domain: PerformanceDomain = PerformanceDomain.COMBINED
    level: AggregationLevel = AggregationLevel.SUBSIDIARY


class HeatmapRequest(PeriodFields):
    """Request for an entities x domains grid."""

    entity_ids: list[str] = Field(..., min_length=1)
    domains: list[PerformanceDomain] = Field(
        default_factory=lambda: [
            PerformanceDomain.COMBINED,
            PerformanceDomain.STRATEGY,
            PerformanceDomain.OKR,
            PerformanceDomain.KPI,
        ]
    )
    level: AggregationLevel = AggregationLevel.SUBSIDIARY


class SnapshotRequest(BaseModel):
    """Request to take a snapshot of one entity (or a scheduled batch)."""

    company_id: str = Field(..., min_length=1)
    frequency: SnapshotFrequency
    level: AggregationLevel | None = None
    entity_id: str | None = None
    entity_name: str | None = None
    actor_id: str = "api"
    scheduled: bool = Field(default=False, description="Snapshot group, subsidiaries, departments")

    @model_validator(mode="after")
    def _entity_or_scheduled(self):
        if not self.scheduled and not (self.level and self.entity_id and self.entity_name):
            raise ValueError("level, entity_id and entity_name are required unless scheduled")
        return self
