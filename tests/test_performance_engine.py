"""
Tests for the AggregationEngine.

Covers:
- Composite score, rating, health and issue counts (golden scenario)
- Weight validation
- Child summaries and directory scoping
- Prior-period deltas and trend
- Hierarchy shape, depth cap and cyclic directories
- Comparator ranking/statistics and heatmap min/max
- Deadline expiry, error propagation, read throttling, run-ID propagation
"""

import dataclasses
import threading
import time
from datetime import datetime, timezone

import pytest

from command_center.aggregation import (
    AggregationEngine,
    AggregationInput,
    AggregationLevel,
    AggregationTimeoutError,
    Deadline,
    HealthIndicator,
    InMemorySource,
    InMemoryStore,
    InvalidPeriodError,
    InvalidWeightsError,
    PerformanceDomain,
    PerformanceRating,
    PerformanceWeights,
    TrendIndicator,
    aggregation_key,
)
from command_center.aggregation.engine import worst_health
from command_center.observability import RunContext, get_run_id, run_fields
from tests.fixtures import (
    COMPANY_ID,
    EXPECTED_COMBINED,
    EXPECTED_KPI,
    EXPECTED_OKR,
    EXPECTED_STRATEGY,
    kpi_only_source,
)

FIXED_NOW = datetime(2025, 9, 15, 12, 0, tzinfo=timezone.utc)


def _input(level="subsidiary", entity_id="sub-1", name="Finishes", **kwargs):
    return AggregationInput(
        level=level, entity_id=entity_id, entity_name=name, fiscal_year=2025, **kwargs
    )


# =============================================================================
# COMPOSITE AGGREGATION
# =============================================================================


class TestAggregate:
    def test_group_golden_scenario(self, engine):
        """Group FY2025 with strategy 80, okr 70, kpi 90 and default weights."""
        result = engine.aggregate(COMPANY_ID, _input("group", COMPANY_ID, "Group"), "u-1")

        assert result.strategy_score == pytest.approx(EXPECTED_STRATEGY)
        assert result.okr_score == pytest.approx(EXPECTED_OKR)
        assert result.kpi_score == pytest.approx(EXPECTED_KPI)
        assert result.combined_score == pytest.approx(EXPECTED_COMBINED)
        assert result.rating == PerformanceRating.ON_TRACK
        assert result.weights == PerformanceWeights(0.3, 0.4, 0.3)

    def test_record_identity_and_period(self, engine):
        result = engine.aggregate(COMPANY_ID, _input(quarter=2), "u-1")
        assert result.id == "sub-1_2025_2"
        assert result.period_start == datetime(2025, 10, 1)
        assert result.period_end == datetime(2025, 12, 31, 23, 59, 59)
        assert result.calculated_by == "u-1"
        assert result.calculated_at.tzinfo is not None

    def test_counts(self, engine):
        result = engine.aggregate(COMPANY_ID, _input(), "u-1")
        assert (result.strategy_count, result.okr_count, result.kpi_count) == (1, 1, 1)

    def test_health_issue_counts(self, engine):
        health = engine.aggregate(COMPANY_ID, _input(), "u-1").health
        assert health.strategy_health == HealthIndicator.HEALTHY
        assert health.kpi_health == HealthIndicator.HEALTHY
        assert health.critical_issues == 1  # one at-risk strategic objective
        assert health.warning_issues == 2  # delayed initiative + at-risk key result
        assert health.healthy_items == 6
        assert health.no_data_items == 0

    def test_custom_weights(self, engine):
        weights = PerformanceWeights(0.0, 0.0, 1.0)
        result = engine.aggregate(COMPANY_ID, _input(weights=weights), "u-1")
        assert result.combined_score == pytest.approx(EXPECTED_KPI)
        assert result.rating == PerformanceRating.EXCEPTIONAL

    @pytest.mark.parametrize(
        "weights",
        [
            PerformanceWeights(0.5, 0.5, 0.5),
            PerformanceWeights(1.2, -0.1, -0.1),
            PerformanceWeights(float("nan"), 0.5, 0.5),
            PerformanceWeights(float("inf"), 0.0, 0.0),
            PerformanceWeights(0.3, 0.4, float("-inf")),
        ],
    )
    def test_invalid_weights_rejected(self, engine, weights):
        with pytest.raises(InvalidWeightsError):
            engine.aggregate(COMPANY_ID, _input(weights=weights), "u-1")

    def test_weights_within_tolerance_accepted(self, engine):
        weights = PerformanceWeights(0.1, 0.2, 0.7000000001)
        engine.aggregate(COMPANY_ID, _input(weights=weights), "u-1")

    def test_quarter_and_month_rejected(self, engine):
        with pytest.raises(InvalidPeriodError):
            engine.aggregate(COMPANY_ID, _input(quarter=1, month=8), "u-1")

    def test_entity_without_data(self, engine):
        result = engine.aggregate(COMPANY_ID, _input(entity_id="sub-2", name="Advisory"), "u-1")
        assert result.combined_score == 0.0
        assert result.rating == PerformanceRating.CRITICAL
        assert result.health.strategy_health == HealthIndicator.NO_DATA
        # No domain has data: overall is not driven by NO_DATA
        assert result.health.overall == HealthIndicator.HEALTHY

    def test_no_children_unless_requested(self, engine):
        assert engine.aggregate(COMPANY_ID, _input(), "u-1").child_aggregations is None

    def test_does_not_persist(self, engine, store):
        engine.aggregate(COMPANY_ID, _input(), "u-1")
        assert store.get(COMPANY_ID, "sub-1_2025_full") is None


class TestWorstHealth:
    def test_critical_beats_warning(self):
        assert (
            worst_health(HealthIndicator.WARNING, HealthIndicator.CRITICAL, HealthIndicator.HEALTHY)
            == HealthIndicator.CRITICAL
        )

    def test_no_data_never_overrides(self):
        assert (
            worst_health(HealthIndicator.NO_DATA, HealthIndicator.WARNING, HealthIndicator.NO_DATA)
            == HealthIndicator.WARNING
        )

    def test_all_no_data_is_healthy(self):
        assert worst_health(*[HealthIndicator.NO_DATA] * 3) == HealthIndicator.HEALTHY


class TestChildren:
    def test_group_children_are_active_subsidiaries(self, engine):
        result = engine.aggregate(
            COMPANY_ID, _input("group", COMPANY_ID, "Group", include_children=True), "u-1"
        )
        assert [c.entity_id for c in result.child_aggregations] == ["sub-1", "sub-2"]
        assert result.child_aggregations[0].level == AggregationLevel.SUBSIDIARY

    def test_children_sorted_by_combined_descending(self):
        engine = AggregationEngine.from_source(
            kpi_only_source({"low": 20, "high": 95, "mid": 50}), InMemoryStore()
        )
        result = engine.aggregate(
            COMPANY_ID, _input("group", COMPANY_ID, "Group", include_children=True), "u-1"
        )
        assert [c.entity_id for c in result.child_aggregations] == ["high", "mid", "low"]
        scores = [c.combined_score for c in result.child_aggregations]
        assert scores == sorted(scores, reverse=True)

    def test_subsidiary_children_scoped_to_parent(self, engine):
        result = engine.aggregate(COMPANY_ID, _input(include_children=True), "u-1")
        assert [c.entity_id for c in result.child_aggregations] == ["dept-1"]

    def test_team_has_no_children(self, engine):
        result = engine.aggregate(
            COMPANY_ID, _input("team", "team-1", "Millwork", include_children=True), "u-1"
        )
        assert result.child_aggregations == []


class TestPriorPeriod:
    def test_no_prior_record_means_stable_without_deltas(self, engine):
        result = engine.aggregate(COMPANY_ID, _input(), "u-1")
        assert result.trend == TrendIndicator.STABLE
        assert result.previous_score is None
        assert result.score_change is None
        assert result.score_change_percent is None

    def _save_prior(self, engine, combined, fiscal_year=2024, quarter=None):
        current = engine.aggregate(COMPANY_ID, _input(), "u-1")
        prior = dataclasses.replace(
            current,
            id=aggregation_key("sub-1", fiscal_year, quarter),
            fiscal_year=fiscal_year,
            quarter=quarter,
            combined_score=combined,
        )
        engine.save_aggregation(COMPANY_ID, prior)

    def test_deltas_against_previous_year(self, engine):
        self._save_prior(engine, 50.0)
        result = engine.aggregate(COMPANY_ID, _input(), "u-1")
        assert result.previous_score == 50.0
        assert result.score_change == pytest.approx(EXPECTED_COMBINED - 50.0)
        assert result.score_change_percent == pytest.approx(58.0)
        assert result.trend == TrendIndicator.STRONG_UP

    def test_small_decline(self, engine):
        self._save_prior(engine, 83.0)
        result = engine.aggregate(COMPANY_ID, _input(), "u-1")
        assert result.trend == TrendIndicator.DOWN

    def test_previous_zero_gives_zero_percent(self, engine):
        self._save_prior(engine, 0.0)
        result = engine.aggregate(COMPANY_ID, _input(), "u-1")
        assert result.score_change_percent == 0.0
        assert result.trend == TrendIndicator.STABLE

    def test_quarter_looks_up_previous_quarter(self, engine):
        self._save_prior(engine, 79.0, fiscal_year=2024, quarter=4)
        result = engine.aggregate(COMPANY_ID, _input(quarter=1), "u-1")
        assert result.previous_score == 79.0


# =============================================================================
# HIERARCHY
# =============================================================================


class LoopDirectory(InMemorySource):
    """Directory that reports the same child at every level."""

    def list_child_entities(self, company_id, level, parent_entity_id=None):
        return [{"id": "loop", "name": "Loop"}]


class TestHierarchy:
    def test_tree_shape(self, engine):
        tree = engine.build_hierarchy(COMPANY_ID, 2025)
        root = tree.root
        assert root.id == COMPANY_ID
        assert root.level == AggregationLevel.GROUP
        assert [c.id for c in root.children] == ["sub-1", "sub-2"]
        sub1 = root.children[0]
        assert [c.id for c in sub1.children] == ["dept-1"]
        assert [c.id for c in sub1.children[0].children] == ["team-1"]
        assert tree.depth == 4
        assert tree.total_nodes == 6  # group, 2 subs, 2 depts, 1 team
        assert tree.aggregation_method == "weighted_average"

    def test_root_named_after_group(self, engine):
        assert engine.build_hierarchy(COMPANY_ID, 2025).root.name == engine.group_entity_name

    def test_node_scores_match_aggregate(self, engine):
        tree = engine.build_hierarchy(COMPANY_ID, 2025)
        sub1 = tree.root.children[0]
        assert sub1.combined_score == pytest.approx(EXPECTED_COMBINED)
        assert sub1.rating == PerformanceRating.ON_TRACK
        assert sub1.child_count == 1

    def test_cyclic_directory_terminates_at_depth_cap(self):
        engine = AggregationEngine.from_source(LoopDirectory(), InMemoryStore())
        tree = engine.build_hierarchy(COMPANY_ID, 2025)
        assert tree.depth == 4
        assert tree.total_nodes == 4

    def test_configured_depth_cap(self):
        engine = AggregationEngine.from_source(LoopDirectory(), InMemoryStore(), max_depth=2)
        tree = engine.build_hierarchy(COMPANY_ID, 2025)
        assert tree.depth == 2
        assert tree.total_nodes == 2

    def test_requested_depth_above_cap_is_clamped(self):
        engine = AggregationEngine.from_source(LoopDirectory(), InMemoryStore(), max_depth=9)
        assert engine.max_depth == 4
        tree = engine.build_hierarchy(COMPANY_ID, 2025)
        assert tree.depth == 4
        assert tree.total_nodes == 4

    def test_to_dict(self, engine):
        data = engine.build_hierarchy(COMPANY_ID, 2025).to_dict()
        assert data["root"]["child_count"] == 2
        assert data["root"]["children"][0]["combined_score"] == pytest.approx(79.0)


# =============================================================================
# COMPARISON / HEATMAP
# =============================================================================


@pytest.fixture
def kpi_engine():
    return AggregationEngine.from_source(
        kpi_only_source({"a": 30, "b": 90, "c": 60}), InMemoryStore()
    )


class TestCompare:
    def test_ranking_and_statistics(self, kpi_engine):
        result = kpi_engine.compare(COMPANY_ID, ["a", "b", "c"], PerformanceDomain.KPI, 2025)
        assert [e.entity_id for e in result.entities] == ["b", "c", "a"]
        assert [e.rank for e in result.entities] == [1, 2, 3]
        assert [round(e.percentile, 1) for e in result.entities] == [100.0, 66.7, 33.3]
        assert result.average == pytest.approx(60.0)
        assert result.median == pytest.approx(60.0)
        assert result.standard_deviation == pytest.approx(24.494897, rel=1e-5)
        assert result.top_performer == "B"
        assert result.bottom_performer == "A"
        assert [r.entity_id for r in result.rankings] == ["b", "c", "a"]

    def test_even_count_median(self, kpi_engine):
        result = kpi_engine.compare(COMPANY_ID, ["a", "c"], "kpi", 2025)
        assert result.median == pytest.approx(45.0)

    def test_rating_uses_domain_score(self, kpi_engine):
        result = kpi_engine.compare(COMPANY_ID, ["a", "b"], "kpi", 2025)
        assert result.entities[0].rating == PerformanceRating.EXCEPTIONAL

    def test_unknown_entity_name_falls_back_to_id(self, kpi_engine):
        result = kpi_engine.compare(COMPANY_ID, ["a", "ghost"], "combined", 2025)
        assert {e.entity_name for e in result.entities} == {"A", "ghost"}

    def test_requires_two_entities(self, kpi_engine):
        with pytest.raises(ValueError):
            kpi_engine.compare(COMPANY_ID, ["a"], "kpi", 2025)

    def test_period_echo(self, kpi_engine):
        result = kpi_engine.compare(COMPANY_ID, ["a", "b"], "kpi", 2025, quarter=3)
        assert result.to_dict()["period"] == {"fiscal_year": 2025, "quarter": 3}


class TestHeatmap:
    def test_grid(self, kpi_engine):
        grid = kpi_engine.heatmap(
            COMPANY_ID, ["a", "b"], [PerformanceDomain.COMBINED, PerformanceDomain.KPI], 2025
        )
        assert [r.id for r in grid.rows] == ["a", "b"]
        assert [c.label for c in grid.columns] == ["Overall", "Kpi"]
        assert len(grid.cells) == 4
        assert grid.row_type == "entity"
        assert grid.column_type == "domain"

    def test_min_max_span_all_cells(self, kpi_engine):
        grid = kpi_engine.heatmap(COMPANY_ID, ["a", "b"], ["combined", "kpi"], 2025)
        assert grid.min_value == pytest.approx(9.0)  # a: 30 * 0.3
        assert grid.max_value == pytest.approx(90.0)

    def test_tooltip(self, kpi_engine):
        grid = kpi_engine.heatmap(COMPANY_ID, ["b"], ["kpi"], 2025)
        assert grid.cells[0].tooltip == "B: 90.0"

    def test_empty_grid_keeps_initial_bounds(self, kpi_engine):
        grid = kpi_engine.heatmap(COMPANY_ID, ["a"], [], 2025)
        assert grid.cells == []
        assert (grid.min_value, grid.max_value) == (100.0, 0.0)


# =============================================================================
# PERSISTENCE PASS-THROUGH
# =============================================================================


class TestPersistence:
    def test_save_then_get(self, engine):
        result = engine.aggregate(COMPANY_ID, _input(quarter=1), "u-1")
        engine.save_aggregation(COMPANY_ID, result)
        loaded = engine.get_aggregation(COMPANY_ID, "sub-1", 2025, 1)
        assert loaded == result

    def test_last_write_wins(self, engine):
        result = engine.aggregate(COMPANY_ID, _input(), "u-1")
        engine.save_aggregation(COMPANY_ID, result)
        engine.save_aggregation(COMPANY_ID, dataclasses.replace(result, combined_score=12.5))
        assert engine.get_aggregation(COMPANY_ID, "sub-1", 2025).combined_score == 12.5

    def test_missing_returns_none(self, engine):
        assert engine.get_aggregation(COMPANY_ID, "nobody", 2025) is None


# =============================================================================
# CONCURRENCY
# =============================================================================


class SlowSource(InMemorySource):
    def __init__(self, delay):
        super().__init__()
        self.delay = delay

    def list_plans(self, company_id, fiscal_year):
        time.sleep(self.delay)
        return []


class FailingSource(InMemorySource):
    def list_active_kpis(self, company_id):
        raise RuntimeError("kpi store unavailable")


class CountingSource(InMemorySource):
    """Records the peak number of concurrent reads."""

    def __init__(self):
        super().__init__()
        self._lock = threading.Lock()
        self.active = 0
        self.peak = 0
        self.run_ids = []
        self.fields = []

    def _read(self):
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
            self.run_ids.append(get_run_id())
            self.fields.append(run_fields())
        time.sleep(0.01)
        with self._lock:
            self.active -= 1
        return []

    def list_plans(self, company_id, fiscal_year):
        return self._read()

    def list_objectives(self, company_id, fiscal_year, quarter=None):
        return self._read()

    def list_active_kpis(self, company_id):
        return self._read()


class TestConcurrency:
    def test_deadline_expiry_raises_timeout(self):
        engine = AggregationEngine.from_source(SlowSource(0.5), InMemoryStore())
        with pytest.raises(AggregationTimeoutError):
            engine.aggregate(COMPANY_ID, _input(), "u-1", deadline=Deadline(0.05))

    def test_timeout_is_a_timeout_error(self):
        engine = AggregationEngine.from_source(SlowSource(0.5), InMemoryStore())
        with pytest.raises(TimeoutError):
            engine.build_hierarchy(COMPANY_ID, 2025, deadline=Deadline(0.05))

    def test_expired_deadline_fails_fast(self):
        engine = AggregationEngine.from_source(InMemorySource(), InMemoryStore())
        deadline = Deadline(0)
        with pytest.raises(AggregationTimeoutError):
            engine.aggregate(COMPANY_ID, _input(), "u-1", deadline=deadline)

    def test_generous_deadline_completes(self, engine):
        result = engine.aggregate(COMPANY_ID, _input(), "u-1", deadline=Deadline(30))
        assert result.combined_score == pytest.approx(EXPECTED_COMBINED)

    def test_source_errors_propagate(self):
        engine = AggregationEngine.from_source(FailingSource(), InMemoryStore())
        with pytest.raises(RuntimeError, match="kpi store unavailable"):
            engine.aggregate(COMPANY_ID, _input(), "u-1")

    def test_reads_are_throttled(self):
        source = CountingSource()
        engine = AggregationEngine.from_source(source, InMemoryStore(), max_concurrent_reads=1)
        engine.aggregate(COMPANY_ID, _input(), "u-1")
        assert source.peak == 1

    def test_run_id_reaches_worker_threads(self):
        source = CountingSource()
        engine = AggregationEngine.from_source(source, InMemoryStore())
        with RunContext("run-test"):
            engine.aggregate(COMPANY_ID, _input(), "u-1")
        assert source.run_ids == ["run-test"] * 3

    def test_company_and_operation_reach_worker_threads(self):
        source = CountingSource()
        engine = AggregationEngine.from_source(source, InMemoryStore())
        with RunContext("run-test", company_id=COMPANY_ID, operation="aggregate"):
            engine.aggregate(COMPANY_ID, _input(), "u-1")
        expected = {"run_id": "run-test", "company_id": COMPANY_ID, "operation": "aggregate"}
        assert source.fields == [expected] * 3

    def test_deadline_after_none(self):
        assert Deadline.after(None) is None
        assert Deadline.after(5).remaining() > 4
