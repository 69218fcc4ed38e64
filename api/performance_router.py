"""
Performance API Router - Composite Aggregation Endpoints

Exposes the aggregation engine and snapshot service over REST.

AUTHENTICATION: All endpoints require a valid Bearer token.
Set CC_API_TOKEN environment variable to enable auth.
Without this env var, auth is disabled (development mode).

Errors:
    400  invalid weights, periods or entity lists
    404  no persisted aggregation/snapshot under the key
    504  the request deadline (CC_DEFAULT_TIMEOUT_S) expired
    500  anything else (logged with traceback)

Usage in server.py:
    from api.performance_router import performance_router
    app.include_router(performance_router, prefix="/api/v1/performance")
"""

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query

from api.auth import require_auth
from api.response_models import (
    AggregateRequest,
    CompareRequest,
    HeatmapRequest,
    PerformanceResponse,
    SnapshotRequest,
)
from command_center import config
from command_center.aggregation import (
    AggregatedPerformance,
    AggregationEngine,
    AggregationInput,
    AggregationLevel,
    AggregationTimeoutError,
    Deadline,
    InMemorySource,
    PerformanceDomain,
    SnapshotFilters,
    SnapshotFrequency,
    SnapshotService,
    SQLiteStore,
)
from command_center.observability import RunContext

logger = logging.getLogger(__name__)

# Router - ALL endpoints require authentication
performance_router = APIRouter(
    tags=["Performance"],
    dependencies=[Depends(require_auth)],
)

# Singletons, built lazily from config
_engine: AggregationEngine | None = None
_snapshots: SnapshotService | None = None


def _build_services() -> tuple[AggregationEngine, SnapshotService]:
    store = SQLiteStore(config.DB_PATH)
    if config.SOURCE_PATH:
        source = InMemorySource.from_json(config.SOURCE_PATH)
    else:
        logger.warning("CC_SOURCE_PATH not set - serving from an empty source")
        source = InMemorySource()
    engine = AggregationEngine.from_source(source, store)
    return engine, SnapshotService(engine, store)


def get_engine() -> AggregationEngine:
    """Get or create the aggregation engine."""
    global _engine, _snapshots
    if _engine is None:
        _engine, _snapshots = _build_services()
    return _engine


def get_snapshot_service() -> SnapshotService:
    """Get or create the snapshot service."""
    global _engine, _snapshots
    if _snapshots is None:
        _engine, _snapshots = _build_services()
    return _snapshots


def _wrap_response(data: dict | list, params: dict | None = None) -> dict:
    """Wrap response in standard envelope."""
    return {
        "status": "ok",
        "data": data,
        "computed_at": datetime.now(timezone.utc).isoformat(),
        "params": params or {},
    }


def _run(operation: str, compute: Callable[[], Any], params: dict) -> dict:
    """Run one engine call and map its failures onto HTTP status codes."""
    try:
        with RunContext(company_id=params.get("company_id"), operation=operation):
            data = compute()
    except AggregationTimeoutError as e:
        logger.warning("%s timed out: %s", operation, e)
        raise HTTPException(status_code=504, detail=str(e)) from e
    except (ValueError, KeyError) as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("%s failed", operation)
        raise HTTPException(status_code=500, detail=str(e)) from e
    return _wrap_response(data, params)


def _deadline() -> Deadline | None:
    return Deadline.after(config.DEFAULT_TIMEOUT_S)


# =============================================================================
# AGGREGATION
# =============================================================================


@performance_router.post("/aggregate", response_model=PerformanceResponse)
def aggregate(body: AggregateRequest):
    """
    Compute the composite performance of one entity for one fiscal period.

    With `save=true` the result is also persisted under its deterministic key.
    """

    def compute():
        engine = get_engine()
        result = engine.aggregate(
            body.company_id,
            AggregationInput(
                level=body.level,
                entity_id=body.entity_id,
                entity_name=body.entity_name,
                fiscal_year=body.fiscal_year,
                quarter=body.quarter,
                month=body.month,
                weights=body.weights.to_weights() if body.weights else None,
                include_children=body.include_children,
            ),
            body.actor_id,
            _deadline(),
        )
        if body.save:
            engine.save_aggregation(body.company_id, result)
        return result.to_dict()

    return _run("aggregate", compute, body.params())


@performance_router.post("/aggregations", response_model=PerformanceResponse)
def save_aggregation(record: dict[str, Any] = Body(...)):
    """Persist a previously computed aggregation (last write wins)."""

    def compute():
        parsed = AggregatedPerformance.from_dict(record)
        get_engine().save_aggregation(parsed.company_id, parsed)
        return {"id": parsed.id, "saved": True}

    return _run("save_aggregation", compute, {"id": record.get("id")})


@performance_router.get("/aggregations/{entity_id}", response_model=PerformanceResponse)
def get_aggregation(
    entity_id: str,
    company_id: str = Query(..., description="Company the entity belongs to"),
    fiscal_year: int = Query(..., description="Fiscal year"),
    quarter: int | None = Query(None, ge=1, le=4, description="Fiscal quarter"),
):
    """Read a persisted aggregation by entity and period."""
    params = {"company_id": company_id, "fiscal_year": fiscal_year, "quarter": quarter}

    def compute():
        record = get_engine().get_aggregation(company_id, entity_id, fiscal_year, quarter)
        if record is None:
            raise HTTPException(status_code=404, detail=f"No aggregation for {entity_id}")
        return record.to_dict()

    return _run("get_aggregation", compute, params)


@performance_router.get("/hierarchy", response_model=PerformanceResponse)
def hierarchy(
    company_id: str = Query(..., description="Company to build the tree for"),
    fiscal_year: int = Query(..., description="Fiscal year"),
    quarter: int | None = Query(None, ge=1, le=4, description="Fiscal quarter"),
):
    """
    Aggregate the whole org tree, group downwards.

    Returns nodes with the four scores, rating, trend and health per entity.
    """
    params = {"company_id": company_id, "fiscal_year": fiscal_year, "quarter": quarter}
    return _run(
        "hierarchy",
        lambda: get_engine()
        .build_hierarchy(company_id, fiscal_year, quarter, _deadline())
        .to_dict(),
        params,
    )


# =============================================================================
# CROSS-ENTITY VIEWS
# =============================================================================


@performance_router.post("/compare", response_model=PerformanceResponse)
def compare(body: CompareRequest):
    """Rank entities on one domain with mean, median and spread."""
    return _run(
        "compare",
        lambda: get_engine()
        .compare(
            body.company_id,
            body.entity_ids,
            body.domain,
            body.fiscal_year,
            body.quarter,
            level=body.level,
            deadline=_deadline(),
        )
        .to_dict(),
        body.params(),
    )


@performance_router.post("/heatmap", response_model=PerformanceResponse)
def heatmap(body: HeatmapRequest):
    """Entities x domains grid for color-scaled display."""
    return _run(
        "heatmap",
        lambda: get_engine()
        .heatmap(
            body.company_id,
            body.entity_ids,
            body.domains,
            body.fiscal_year,
            body.quarter,
            level=body.level,
            deadline=_deadline(),
        )
        .to_dict(),
        body.params(),
    )


# =============================================================================
# SNAPSHOTS
# =============================================================================


@performance_router.post("/snapshots", response_model=PerformanceResponse)
def create_snapshot(body: SnapshotRequest):
    """Take one snapshot, or the scheduled batch when `scheduled=true`."""
    params = body.model_dump(mode="json", exclude_none=True)

    def compute():
        service = get_snapshot_service()
        if body.scheduled:
            count = service.create_scheduled_snapshots(
                body.company_id, body.frequency, body.actor_id
            )
            return {"created": count}
        return service.create_snapshot(
            body.company_id,
            body.level,
            body.entity_id,
            body.entity_name,
            body.frequency,
            body.actor_id,
            deadline=_deadline(),
        ).to_dict()

    return _run("create_snapshot", compute, params)


@performance_router.get("/snapshots", response_model=PerformanceResponse)
def list_snapshots(
    company_id: str = Query(..., description="Company to list snapshots for"),
    entity_id: str | None = Query(None),
    level: AggregationLevel | None = Query(None),
    frequency: SnapshotFrequency | None = Query(None),
    fiscal_year: int | None = Query(None),
    quarter: int | None = Query(None, ge=1, le=4),
    limit: int = Query(50, ge=1, le=500),
):
    """Snapshots matching the filters, newest first."""
    params = {
        "company_id": company_id,
        "entity_id": entity_id,
        "level": level.value if level else None,
        "frequency": frequency.value if frequency else None,
        "fiscal_year": fiscal_year,
        "quarter": quarter,
        "limit": limit,
    }
    filters = SnapshotFilters(
        level=level,
        entity_id=entity_id,
        frequency=frequency,
        fiscal_year=fiscal_year,
        quarter=quarter,
        limit=limit,
    )
    return _run(
        "list_snapshots",
        lambda: [s.to_dict() for s in get_snapshot_service().list_snapshots(company_id, filters)],
        params,
    )


@performance_router.get("/trend/{entity_id}", response_model=PerformanceResponse)
def trend(
    entity_id: str,
    company_id: str = Query(...),
    entity_name: str | None = Query(None, description="Display name (defaults to the id)"),
    level: AggregationLevel = Query(AggregationLevel.SUBSIDIARY),
    domain: PerformanceDomain = Query(PerformanceDomain.COMBINED),
    frequency: SnapshotFrequency = Query(SnapshotFrequency.MONTHLY),
    periods: int = Query(12, ge=1, le=120, description="Snapshots to fit"),
):
    """Regression trend over the entity's recent snapshots."""
    params = {
        "company_id": company_id,
        "level": level.value,
        "domain": domain.value,
        "frequency": frequency.value,
        "periods": periods,
    }
    return _run(
        "trend",
        lambda: get_snapshot_service()
        .calculate_trend(
            company_id, entity_id, entity_name or entity_id, level, domain, frequency, periods
        )
        .to_dict(),
        params,
    )
