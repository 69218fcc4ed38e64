"""
Data model for the performance aggregation engine.

Every output shape is a dataclass with a to_dict() method; records that are
persisted (AggregatedPerformance, PerformanceSnapshot and what they embed)
also have a from_dict() classmethod so a stored record reads back equal.
Scores are kept unrounded so a round trip through the store is exact.
"""

import math
from dataclasses import asdict, dataclass, field
from datetime import datetime

from .constants import (
    DEFAULT_WEIGHT_KPI,
    DEFAULT_WEIGHT_OKR,
    DEFAULT_WEIGHT_STRATEGY,
    WEIGHT_TOLERANCE,
    AggregationLevel,
    HealthIndicator,
    PerformanceDomain,
    PerformanceRating,
    SnapshotFrequency,
    TrendIndicator,
)
from .errors import InvalidWeightsError
from .period import Period


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


# =============================================================================
# INPUTS
# =============================================================================


@dataclass(frozen=True)
class PerformanceWeights:
    """Fractions applied to the strategy, OKR and KPI scores. Must sum to 1.0."""

    strategy: float
    okr: float
    kpi: float

    @classmethod
    def default(cls) -> "PerformanceWeights":
        return cls(DEFAULT_WEIGHT_STRATEGY, DEFAULT_WEIGHT_OKR, DEFAULT_WEIGHT_KPI)

    def validate(self) -> "PerformanceWeights":
        """Raise InvalidWeightsError unless weights are finite, non-negative and sum to 1."""
        if not all(math.isfinite(w) for w in (self.strategy, self.okr, self.kpi)):
            raise InvalidWeightsError(f"Weights must be finite numbers, got {self.to_dict()}")
        if min(self.strategy, self.okr, self.kpi) < 0:
            raise InvalidWeightsError(f"Weights must be non-negative, got {self.to_dict()}")
        total = self.strategy + self.okr + self.kpi
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            raise InvalidWeightsError(f"Weights must sum to 1.0, got {total:.6f}")
        return self

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "PerformanceWeights":
        return cls(float(data["strategy"]), float(data["okr"]), float(data["kpi"]))


@dataclass
class AggregationInput:
    """
    What to aggregate: one entity at one level for one fiscal period.

    At most one of quarter/month may be set; neither means the full fiscal year.
    """

    level: AggregationLevel
    entity_id: str
    entity_name: str
    fiscal_year: int
    quarter: int | None = None
    month: int | None = None
    weights: PerformanceWeights | None = None
    include_children: bool = False

    def __post_init__(self):
        self.level = AggregationLevel(self.level)

    @property
    def period(self) -> Period:
        return Period.from_parts(self.fiscal_year, self.quarter, self.month)

    def for_entity(
        self,
        level: AggregationLevel,
        entity_id: str,
        entity_name: str,
        include_children: bool = False,
    ) -> "AggregationInput":
        """Same period and weights, different entity."""
        return AggregationInput(
            level=level,
            entity_id=entity_id,
            entity_name=entity_name,
            fiscal_year=self.fiscal_year,
            quarter=self.quarter,
            month=self.month,
            weights=self.weights,
            include_children=include_children,
        )


# =============================================================================
# DOMAIN AGGREGATIONS
# =============================================================================


@dataclass
class PillarProgress:
    pillar_id: str
    pillar_name: str
    progress: float
    objectives_count: int
    completed_objectives: int
    status: str  # completed | on_track | at_risk | delayed

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class StrategyAggregation:
    """Strategic-plan execution for one entity and period."""

    total_plans: int = 0
    active_plans: int = 0
    completed_plans: int = 0
    pillar_progress: list[PillarProgress] = field(default_factory=list)
    average_pillar_progress: float = 0.0
    total_objectives: int = 0
    completed_objectives: int = 0
    on_track_objectives: int = 0
    at_risk_objectives: int = 0
    total_initiatives: int = 0
    completed_initiatives: int = 0
    on_track_initiatives: int = 0
    delayed_initiatives: int = 0
    score: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "StrategyAggregation":
        values = dict(data)
        values["pillar_progress"] = [PillarProgress(**p) for p in data.get("pillar_progress", [])]
        return cls(**values)


@dataclass
class OKRLevelSummary:
    level: str
    objectives_count: int
    average_score: float
    completion_rate: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class OKRAggregation:
    """OKR attainment for one entity and period."""

    total_objectives: int = 0
    completed_objectives: int = 0
    on_track_objectives: int = 0
    at_risk_objectives: int = 0
    not_started_objectives: int = 0
    total_key_results: int = 0
    completed_key_results: int = 0
    on_track_key_results: int = 0
    at_risk_key_results: int = 0
    average_objective_score: float = 0.0
    average_key_result_score: float = 0.0
    score: float = 0.0
    by_level: dict[str, OKRLevelSummary] = field(default_factory=dict)
    alignment_score: float = 100.0
    cascading_depth: int = 0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "OKRAggregation":
        values = dict(data)
        values["by_level"] = {
            name: OKRLevelSummary(**summary) for name, summary in data.get("by_level", {}).items()
        }
        return cls(**values)


@dataclass
class KPICategorySummary:
    category: str
    kpi_count: int
    average_score: float
    performance_status: str  # exceeding | on_target | below_target | critical

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class KPIAggregation:
    """KPI attainment for one entity."""

    total_kpis: int = 0
    active_kpis: int = 0
    exceeding_count: int = 0
    on_target_count: int = 0
    below_target_count: int = 0
    critical_count: int = 0
    no_data_count: int = 0
    average_score: float = 0.0
    health_score: float = 0.0
    score: float = 0.0
    by_category: dict[str, KPICategorySummary] = field(default_factory=dict)
    improving_count: int = 0
    declining_count: int = 0
    stable_count: int = 0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "KPIAggregation":
        values = dict(data)
        values["by_category"] = {
            name: KPICategorySummary(**summary)
            for name, summary in data.get("by_category", {}).items()
        }
        return cls(**values)


# =============================================================================
# COMPOSITE
# =============================================================================


@dataclass
class PerformanceHealth:
    """Per-domain and overall health. `overall` is the worst of the three."""

    overall: HealthIndicator
    strategy_health: HealthIndicator
    okr_health: HealthIndicator
    kpi_health: HealthIndicator
    critical_issues: int = 0
    warning_issues: int = 0
    healthy_items: int = 0
    no_data_items: int = 0

    def to_dict(self) -> dict:
        return {
            "overall": self.overall.value,
            "strategy_health": self.strategy_health.value,
            "okr_health": self.okr_health.value,
            "kpi_health": self.kpi_health.value,
            "critical_issues": self.critical_issues,
            "warning_issues": self.warning_issues,
            "healthy_items": self.healthy_items,
            "no_data_items": self.no_data_items,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PerformanceHealth":
        return cls(
            overall=HealthIndicator(data["overall"]),
            strategy_health=HealthIndicator(data["strategy_health"]),
            okr_health=HealthIndicator(data["okr_health"]),
            kpi_health=HealthIndicator(data["kpi_health"]),
            critical_issues=data.get("critical_issues", 0),
            warning_issues=data.get("warning_issues", 0),
            healthy_items=data.get("healthy_items", 0),
            no_data_items=data.get("no_data_items", 0),
        )


@dataclass
class ChildAggregationSummary:
    entity_id: str
    entity_name: str
    level: AggregationLevel
    combined_score: float
    rating: PerformanceRating
    trend: TrendIndicator

    def to_dict(self) -> dict:
        return {
            "entity_id": self.entity_id,
            "entity_name": self.entity_name,
            "level": self.level.value,
            "combined_score": self.combined_score,
            "rating": self.rating.value,
            "trend": self.trend.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ChildAggregationSummary":
        return cls(
            entity_id=data["entity_id"],
            entity_name=data["entity_name"],
            level=AggregationLevel(data["level"]),
            combined_score=data["combined_score"],
            rating=PerformanceRating(data["rating"]),
            trend=TrendIndicator(data["trend"]),
        )


@dataclass
class AggregatedPerformance:
    """
    Composite performance of one entity for one fiscal period.

    Immutable once built; recomputing produces a new record under the same id.
    """

    id: str
    company_id: str
    level: AggregationLevel
    entity_id: str
    entity_name: str
    fiscal_year: int
    quarter: int | None
    month: int | None
    period_start: datetime
    period_end: datetime
    strategy_score: float
    okr_score: float
    kpi_score: float
    combined_score: float
    weights: PerformanceWeights
    rating: PerformanceRating
    trend: TrendIndicator
    strategy_count: int
    okr_count: int
    kpi_count: int
    health: PerformanceHealth
    calculated_at: datetime
    calculated_by: str
    previous_score: float | None = None
    score_change: float | None = None
    score_change_percent: float | None = None
    child_aggregations: list[ChildAggregationSummary] | None = None
    is_snapshot: bool = False

    def score_for(self, domain: PerformanceDomain) -> float:
        """Score of a single domain, or the combined score."""
        domain = PerformanceDomain(domain)
        if domain is PerformanceDomain.STRATEGY:
            return self.strategy_score
        if domain is PerformanceDomain.OKR:
            return self.okr_score
        if domain is PerformanceDomain.KPI:
            return self.kpi_score
        return self.combined_score

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "level": self.level.value,
            "entity_id": self.entity_id,
            "entity_name": self.entity_name,
            "fiscal_year": self.fiscal_year,
            "quarter": self.quarter,
            "month": self.month,
            "period_start": _iso(self.period_start),
            "period_end": _iso(self.period_end),
            "strategy_score": self.strategy_score,
            "okr_score": self.okr_score,
            "kpi_score": self.kpi_score,
            "combined_score": self.combined_score,
            "weights": self.weights.to_dict(),
            "rating": self.rating.value,
            "trend": self.trend.value,
            "strategy_count": self.strategy_count,
            "okr_count": self.okr_count,
            "kpi_count": self.kpi_count,
            "health": self.health.to_dict(),
            "calculated_at": _iso(self.calculated_at),
            "calculated_by": self.calculated_by,
            "previous_score": self.previous_score,
            "score_change": self.score_change,
            "score_change_percent": self.score_change_percent,
            "child_aggregations": (
                [c.to_dict() for c in self.child_aggregations]
                if self.child_aggregations is not None
                else None
            ),
            "is_snapshot": self.is_snapshot,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AggregatedPerformance":
        children = data.get("child_aggregations")
        return cls(
            id=data["id"],
            company_id=data["company_id"],
            level=AggregationLevel(data["level"]),
            entity_id=data["entity_id"],
            entity_name=data["entity_name"],
            fiscal_year=data["fiscal_year"],
            quarter=data.get("quarter"),
            month=data.get("month"),
            period_start=_parse_dt(data["period_start"]),
            period_end=_parse_dt(data["period_end"]),
            strategy_score=data["strategy_score"],
            okr_score=data["okr_score"],
            kpi_score=data["kpi_score"],
            combined_score=data["combined_score"],
            weights=PerformanceWeights.from_dict(data["weights"]),
            rating=PerformanceRating(data["rating"]),
            trend=TrendIndicator(data["trend"]),
            strategy_count=data["strategy_count"],
            okr_count=data["okr_count"],
            kpi_count=data["kpi_count"],
            health=PerformanceHealth.from_dict(data["health"]),
            calculated_at=_parse_dt(data["calculated_at"]),
            calculated_by=data["calculated_by"],
            previous_score=data.get("previous_score"),
            score_change=data.get("score_change"),
            score_change_percent=data.get("score_change_percent"),
            child_aggregations=(
                [ChildAggregationSummary.from_dict(c) for c in children]
                if children is not None
                else None
            ),
            is_snapshot=data.get("is_snapshot", False),
        )


# =============================================================================
# HIERARCHY
# =============================================================================


@dataclass
class PerformanceNode:
    id: str
    name: str
    level: AggregationLevel
    combined_score: float
    strategy_score: float
    okr_score: float
    kpi_score: float
    rating: PerformanceRating
    trend: TrendIndicator
    health: HealthIndicator
    children: list["PerformanceNode"] = field(default_factory=list)

    @property
    def child_count(self) -> int:
        return len(self.children)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "level": self.level.value,
            "combined_score": round(self.combined_score, 2),
            "strategy_score": round(self.strategy_score, 2),
            "okr_score": round(self.okr_score, 2),
            "kpi_score": round(self.kpi_score, 2),
            "rating": self.rating.value,
            "trend": self.trend.value,
            "health": self.health.value,
            "children": [c.to_dict() for c in self.children],
            "child_count": self.child_count,
        }


@dataclass
class PerformanceHierarchy:
    root: PerformanceNode
    depth: int
    total_nodes: int
    aggregation_method: str

    def to_dict(self) -> dict:
        return {
            "root": self.root.to_dict(),
            "depth": self.depth,
            "total_nodes": self.total_nodes,
            "aggregation_method": self.aggregation_method,
        }


# =============================================================================
# COMPARISON
# =============================================================================


@dataclass
class ComparisonEntity:
    entity_id: str
    entity_name: str
    level: AggregationLevel
    score: float
    rating: PerformanceRating
    trend: TrendIndicator
    rank: int = 0
    percentile: float = 0.0

    def to_dict(self) -> dict:
        return {
            "entity_id": self.entity_id,
            "entity_name": self.entity_name,
            "level": self.level.value,
            "score": round(self.score, 2),
            "rating": self.rating.value,
            "trend": self.trend.value,
            "rank": self.rank,
            "percentile": round(self.percentile, 1),
        }


@dataclass
class EntityRanking:
    rank: int
    entity_id: str
    entity_name: str
    score: float

    def to_dict(self) -> dict:
        return {
            "rank": self.rank,
            "entity_id": self.entity_id,
            "entity_name": self.entity_name,
            "score": round(self.score, 2),
        }


@dataclass
class PerformanceComparison:
    """Entities ranked on one domain for one period, plus summary statistics."""

    entities: list[ComparisonEntity]
    domain: PerformanceDomain
    period: Period
    rankings: list[EntityRanking]
    average: float
    median: float
    standard_deviation: float
    top_performer: str
    bottom_performer: str

    def to_dict(self) -> dict:
        return {
            "entities": [e.to_dict() for e in self.entities],
            "domain": self.domain.value,
            "period": {"fiscal_year": self.period.fiscal_year, "quarter": self.period.quarter},
            "rankings": [r.to_dict() for r in self.rankings],
            "average": round(self.average, 2),
            "median": round(self.median, 2),
            "standard_deviation": round(self.standard_deviation, 2),
            "top_performer": self.top_performer,
            "bottom_performer": self.bottom_performer,
        }


# =============================================================================
# HEATMAP
# =============================================================================


@dataclass
class HeatmapRow:
    id: str
    label: str
    level: AggregationLevel

    def to_dict(self) -> dict:
        return {"id": self.id, "label": self.label, "level": self.level.value}


@dataclass
class HeatmapColumn:
    id: str
    label: str
    domain: PerformanceDomain

    def to_dict(self) -> dict:
        return {"id": self.id, "label": self.label, "domain": self.domain.value}


@dataclass
class HeatmapCell:
    row_id: str
    column_id: str
    value: float
    rating: PerformanceRating
    trend: TrendIndicator
    tooltip: str

    def to_dict(self) -> dict:
        return {
            "row_id": self.row_id,
            "column_id": self.column_id,
            "value": round(self.value, 2),
            "rating": self.rating.value,
            "trend": self.trend.value,
            "tooltip": self.tooltip,
        }


@dataclass
class PerformanceHeatmap:
    rows: list[HeatmapRow]
    columns: list[HeatmapColumn]
    cells: list[HeatmapCell]
    min_value: float
    max_value: float
    row_type: str = "entity"
    column_type: str = "domain"

    def to_dict(self) -> dict:
        return {
            "rows": [r.to_dict() for r in self.rows],
            "columns": [c.to_dict() for c in self.columns],
            "cells": [c.to_dict() for c in self.cells],
            "min_value": round(self.min_value, 2),
            "max_value": round(self.max_value, 2),
            "row_type": self.row_type,
            "column_type": self.column_type,
        }


# =============================================================================
# SNAPSHOTS
# =============================================================================


@dataclass
class SnapshotComparison:
    period: str
    previous_score: float
    current_score: float
    change: float
    change_percent: float
    trend: TrendIndicator

    def to_dict(self) -> dict:
        data = asdict(self)
        data["trend"] = self.trend.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "SnapshotComparison":
        values = dict(data)
        values["trend"] = TrendIndicator(data["trend"])
        return cls(**values)


@dataclass
class PerformanceSnapshot:
    """A dated, persisted copy of an entity's scores and domain breakdowns."""

    id: str
    company_id: str
    level: AggregationLevel
    entity_id: str
    entity_name: str
    snapshot_date: datetime
    fiscal_year: int
    fiscal_quarter: int
    fiscal_month: int
    frequency: SnapshotFrequency
    strategy_score: float
    okr_score: float
    kpi_score: float
    combined_score: float
    rating: PerformanceRating
    strategy_data: StrategyAggregation
    okr_data: OKRAggregation
    kpi_data: KPIAggregation
    created_at: datetime
    created_by: str
    comparison: SnapshotComparison | None = None

    def score_for(self, domain: PerformanceDomain) -> float:
        domain = PerformanceDomain(domain)
        if domain is PerformanceDomain.STRATEGY:
            return self.strategy_score
        if domain is PerformanceDomain.OKR:
            return self.okr_score
        if domain is PerformanceDomain.KPI:
            return self.kpi_score
        return self.combined_score

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "level": self.level.value,
            "entity_id": self.entity_id,
            "entity_name": self.entity_name,
            "snapshot_date": _iso(self.snapshot_date),
            "fiscal_year": self.fiscal_year,
            "fiscal_quarter": self.fiscal_quarter,
            "fiscal_month": self.fiscal_month,
            "frequency": self.frequency.value,
            "strategy_score": self.strategy_score,
            "okr_score": self.okr_score,
            "kpi_score": self.kpi_score,
            "combined_score": self.combined_score,
            "rating": self.rating.value,
            "strategy_data": self.strategy_data.to_dict(),
            "okr_data": self.okr_data.to_dict(),
            "kpi_data": self.kpi_data.to_dict(),
            "comparison": self.comparison.to_dict() if self.comparison else None,
            "created_at": _iso(self.created_at),
            "created_by": self.created_by,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PerformanceSnapshot":
        comparison = data.get("comparison")
        return cls(
            id=data["id"],
            company_id=data["company_id"],
            level=AggregationLevel(data["level"]),
            entity_id=data["entity_id"],
            entity_name=data["entity_name"],
            snapshot_date=_parse_dt(data["snapshot_date"]),
            fiscal_year=data["fiscal_year"],
            fiscal_quarter=data["fiscal_quarter"],
            fiscal_month=data["fiscal_month"],
            frequency=SnapshotFrequency(data["frequency"]),
            strategy_score=data["strategy_score"],
            okr_score=data["okr_score"],
            kpi_score=data["kpi_score"],
            combined_score=data["combined_score"],
            rating=PerformanceRating(data["rating"]),
            strategy_data=StrategyAggregation.from_dict(data["strategy_data"]),
            okr_data=OKRAggregation.from_dict(data["okr_data"]),
            kpi_data=KPIAggregation.from_dict(data["kpi_data"]),
            comparison=SnapshotComparison.from_dict(comparison) if comparison else None,
            created_at=_parse_dt(data["created_at"]),
            created_by=data["created_by"],
        )


@dataclass
class SnapshotFilters:
    level: AggregationLevel | None = None
    entity_id: str | None = None
    frequency: SnapshotFrequency | None = None
    fiscal_year: int | None = None
    quarter: int | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    limit: int | None = None


@dataclass
class TrendDataPoint:
    date: datetime
    score: float
    rating: PerformanceRating
    strategy_score: float
    okr_score: float
    kpi_score: float

    def to_dict(self) -> dict:
        return {
            "date": _iso(self.date),
            "score": round(self.score, 2),
            "rating": self.rating.value,
            "strategy_score": round(self.strategy_score, 2),
            "okr_score": round(self.okr_score, 2),
            "kpi_score": round(self.kpi_score, 2),
        }


@dataclass
class PerformanceTrend:
    """Regression-based trend over an entity's snapshot history."""

    entity_id: str
    entity_name: str
    level: AggregationLevel
    domain: PerformanceDomain
    data_points: list[TrendDataPoint]
    trend: TrendIndicator
    trend_strength: float  # R-squared, 0-1
    volatility: float  # population std-dev of scores
    period_start: datetime | None
    period_end: datetime | None
    data_point_count: int
    projected_score: float | None = None
    projected_rating: PerformanceRating | None = None
    confidence_level: float | None = None

    def to_dict(self) -> dict:
        return {
            "entity_id": self.entity_id,
            "entity_name": self.entity_name,
            "level": self.level.value,
            "domain": self.domain.value,
            "data_points": [p.to_dict() for p in self.data_points],
            "trend": self.trend.value,
            "trend_strength": round(self.trend_strength, 3),
            "volatility": round(self.volatility, 2),
            "period_start": _iso(self.period_start),
            "period_end": _iso(self.period_end),
            "data_point_count": self.data_point_count,
            "projected_score": (
                round(self.projected_score, 2) if self.projected_score is not None else None
            ),
            "projected_rating": self.projected_rating.value if self.projected_rating else None,
            "confidence_level": (
                round(self.confidence_level, 1) if self.confidence_level is not None else None
            ),
        }
