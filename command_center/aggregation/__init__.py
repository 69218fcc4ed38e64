"""
Strategy Command Center Performance Aggregation.

Single entry point for composite performance scoring:
- Domain scoring (strategy execution, OKR attainment, KPI attainment)
- Weighted composite per entity and fiscal period, with rating, health, trend
- Org hierarchy trees, cross-entity comparison, entity x domain heatmaps
- Dated snapshots and regression-based trend analysis

Usage:
    from command_center.aggregation import (
        AggregationEngine, AggregationInput, InMemorySource, SQLiteStore,
    )

    engine = AggregationEngine.from_source(InMemorySource.from_json(path), SQLiteStore(db))
    result = engine.aggregate(
        "acme",
        AggregationInput(level="subsidiary", entity_id="sub-1",
                         entity_name="Finishes", fiscal_year=2025),
        actor_id="u-1",
    )
    engine.save_aggregation("acme", result)

    tree = engine.build_hierarchy("acme", fiscal_year=2025)
"""

from .constants import (
    AggregationLevel,
    HealthIndicator,
    PerformanceDomain,
    PerformanceRating,
    SnapshotFrequency,
    TrendIndicator,
    get_child_level,
    get_health_from_score,
    get_rating_from_score,
    get_trend_from_change,
)
from .engine import AggregationEngine, Deadline
from .errors import (
    AggregationError,
    AggregationTimeoutError,
    InvalidPeriodError,
    InvalidWeightsError,
)
from .models import (
    AggregatedPerformance,
    AggregationInput,
    PerformanceComparison,
    PerformanceHeatmap,
    PerformanceHierarchy,
    PerformanceNode,
    PerformanceSnapshot,
    PerformanceTrend,
    PerformanceWeights,
    SnapshotFilters,
)
from .period import Period, aggregation_key, resolve_period
from .snapshots import SnapshotService, snapshot_id
from .sources import InMemorySource
from .store import InMemoryStore, SQLiteStore

__all__ = [
    # Engine
    "AggregationEngine",
    "Deadline",
    "SnapshotService",
    # Inputs / outputs
    "AggregationInput",
    "PerformanceWeights",
    "AggregatedPerformance",
    "PerformanceHierarchy",
    "PerformanceNode",
    "PerformanceComparison",
    "PerformanceHeatmap",
    "PerformanceSnapshot",
    "PerformanceTrend",
    "SnapshotFilters",
    # Periods
    "Period",
    "resolve_period",
    "aggregation_key",
    "snapshot_id",
    # Enums / step functions
    "AggregationLevel",
    "PerformanceRating",
    "TrendIndicator",
    "HealthIndicator",
    "PerformanceDomain",
    "SnapshotFrequency",
    "get_child_level",
    "get_rating_from_score",
    "get_trend_from_change",
    "get_health_from_score",
    # Sources / stores
    "InMemorySource",
    "InMemoryStore",
    "SQLiteStore",
    # Errors
    "AggregationError",
    "InvalidWeightsError",
    "InvalidPeriodError",
    "AggregationTimeoutError",
]
