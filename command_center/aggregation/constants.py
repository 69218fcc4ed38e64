"""
Scoring constants for the performance aggregation engine.

Defines aggregation levels, rating/trend/health buckets, the thresholds that
map numbers onto them, and engine defaults.

This module contains DEFINITIONS ONLY. Computation is in scorers.py and engine.py.
"""

from enum import Enum

from command_center import config


class AggregationLevel(str, Enum):
    """Organizational levels an aggregation can target."""

    GROUP = "group"
    SUBSIDIARY = "subsidiary"
    DEPARTMENT = "department"
    TEAM = "team"
    INDIVIDUAL = "individual"


class PerformanceRating(str, Enum):
    """Six-bucket qualitative label for a combined score."""

    EXCEPTIONAL = "exceptional"  # 90-100
    STRONG = "strong"  # 80-89
    ON_TRACK = "on_track"  # 60-79
    NEEDS_ATTENTION = "needs_attention"  # 40-59
    AT_RISK = "at_risk"  # 20-39
    CRITICAL = "critical"  # 0-19


class TrendIndicator(str, Enum):
    """Period-over-period direction of change."""

    STRONG_UP = "strong_up"
    UP = "up"
    STABLE = "stable"
    DOWN = "down"
    STRONG_DOWN = "strong_down"


class HealthIndicator(str, Enum):
    """Operational status of a domain or of the entity as a whole."""

    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
    NO_DATA = "no_data"


class PerformanceDomain(str, Enum):
    """Scored domains; COMBINED is their weighted sum."""

    COMBINED = "combined"
    STRATEGY = "strategy"
    OKR = "okr"
    KPI = "kpi"


class SnapshotFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"


# =============================================================================
# LEVEL TRAVERSAL
# =============================================================================

# INDIVIDUAL is reachable but never auto-expanded
_CHILD_LEVEL: dict[AggregationLevel, AggregationLevel | None] = {
    AggregationLevel.GROUP: AggregationLevel.SUBSIDIARY,
    AggregationLevel.SUBSIDIARY: AggregationLevel.DEPARTMENT,
    AggregationLevel.DEPARTMENT: AggregationLevel.TEAM,
    AggregationLevel.TEAM: None,
    AggregationLevel.INDIVIDUAL: None,
}

# OKR documents call the group level "company"
OKR_LEVEL_NAMES: dict[AggregationLevel, str] = {
    AggregationLevel.GROUP: "company",
    AggregationLevel.SUBSIDIARY: "subsidiary",
    AggregationLevel.DEPARTMENT: "department",
    AggregationLevel.TEAM: "team",
    AggregationLevel.INDIVIDUAL: "individual",
}


def get_child_level(level: AggregationLevel) -> AggregationLevel | None:
    """Next level down the org tree, or None at the bottom."""
    return _CHILD_LEVEL[AggregationLevel(level)]


# =============================================================================
# DEFAULTS
# =============================================================================

_CONFIG = config.load_aggregation_config()
_WEIGHTS = _CONFIG.get("weights", {})

DEFAULT_WEIGHT_STRATEGY: float = float(_WEIGHTS.get("strategy", 0.3))
DEFAULT_WEIGHT_OKR: float = float(_WEIGHTS.get("okr", 0.4))
DEFAULT_WEIGHT_KPI: float = float(_WEIGHTS.get("kpi", 0.3))
WEIGHT_TOLERANCE = 1e-6

# Hard ceiling on hierarchy depth; configuration can only lower it
HIERARCHY_DEPTH_CAP = 4


def cap_hierarchy_depth(depth) -> int:
    """Clamp a requested hierarchy depth into [1, HIERARCHY_DEPTH_CAP]."""
    return max(1, min(HIERARCHY_DEPTH_CAP, int(depth)))


MAX_HIERARCHY_DEPTH: int = cap_hierarchy_depth(
    _CONFIG.get("max_hierarchy_depth", HIERARCHY_DEPTH_CAP)
)
TREND_PERIODS: int = int(_CONFIG.get("trend_periods", 12))
MIN_DATA_POINTS_FOR_TREND: int = int(_CONFIG.get("min_data_points_for_trend", 3))
SNAPSHOT_RETENTION_DAYS: int = int(_CONFIG.get("snapshot_retention_days", 365))

# Fiscal year starts July 1
FISCAL_YEAR_START_MONTH = 7

# Strategy score blend
STRATEGY_PILLAR_WEIGHT = 0.40
STRATEGY_OBJECTIVE_WEIGHT = 0.35
STRATEGY_INITIATIVE_WEIGHT = 0.25

# OKR convention: 0.7 counts as full success
OKR_SUCCESS_SCORE = 0.7

KPI_FIXED_TARGET_SCORE = 50.0

AGGREGATION_METHOD = "weighted_average"


# =============================================================================
# STEP FUNCTIONS
# =============================================================================


def get_rating_from_score(score: float) -> PerformanceRating:
    """Map a 0-100 score onto the six rating buckets."""
    if score >= 90:
        return PerformanceRating.EXCEPTIONAL
    if score >= 80:
        return PerformanceRating.STRONG
    if score >= 60:
        return PerformanceRating.ON_TRACK
    if score >= 40:
        return PerformanceRating.NEEDS_ATTENTION
    if score >= 20:
        return PerformanceRating.AT_RISK
    return PerformanceRating.CRITICAL


def get_trend_from_change(change_percent: float) -> TrendIndicator:
    """Map a percent change onto the five trend buckets."""
    if change_percent > 10:
        return TrendIndicator.STRONG_UP
    if change_percent > 3:
        return TrendIndicator.UP
    if change_percent >= -3:
        return TrendIndicator.STABLE
    if change_percent > -10:
        return TrendIndicator.DOWN
    return TrendIndicator.STRONG_DOWN


def get_health_from_score(score: float) -> HealthIndicator:
    """Map a domain score onto a health bucket; zero means nothing to score."""
    if score >= 70:
        return HealthIndicator.HEALTHY
    if score >= 40:
        return HealthIndicator.WARNING
    if score > 0:
        return HealthIndicator.CRITICAL
    return HealthIndicator.NO_DATA


def get_pillar_status(progress: float) -> str:
    if progress >= 100:
        return "completed"
    if progress >= 70:
        return "on_track"
    if progress >= 40:
        return "at_risk"
    return "delayed"


def get_category_status(average_score: float) -> str:
    if average_score >= 80:
        return "exceeding"
    if average_score >= 60:
        return "on_target"
    if average_score >= 40:
        return "below_target"
    return "critical"


def clamp_score(value: float) -> float:
    """Clamp to the [0, 100] score range."""
    return min(100.0, max(0.0, value))
