"""
Tests for the strategy, OKR and KPI scorers.

Covers:
- Scope filtering per level (group sees everything)
- Score formulas and count buckets
- Zero-target / zero-current KPI edge cases
- OKR alignment and cascading depth, including cyclic parent links
- Empty inputs score 0 without raising
"""

import pytest

from command_center.aggregation import AggregationInput, AggregationLevel
from command_center.aggregation.scorers import (
    cascading_depth,
    filter_kpis,
    filter_objectives,
    filter_plans,
    kpi_score,
    okr_alignment,
    score_kpis,
    score_okrs,
    score_strategy,
    summarize_kpis,
    summarize_objectives,
    summarize_plans,
)
from tests.fixtures import COMPANY_ID, EXPECTED_KPI, EXPECTED_OKR, EXPECTED_STRATEGY


def _input(level="subsidiary", entity_id="sub-1", **kwargs):
    return AggregationInput(
        level=level, entity_id=entity_id, entity_name=entity_id, fiscal_year=2025, **kwargs
    )


def _kpi(direction, target, current, **extra):
    return {"direction": direction, "target": {"value": target}, "current_value": current, **extra}


# =============================================================================
# STRATEGY
# =============================================================================


class TestStrategyScorer:
    def test_golden_score(self, source):
        agg = score_strategy(COMPANY_ID, _input(), source)
        assert agg.score == pytest.approx(EXPECTED_STRATEGY)
        assert agg.total_plans == 1
        assert agg.total_objectives == 5
        assert agg.completed_objectives == 4
        assert agg.at_risk_objectives == 1
        assert agg.total_initiatives == 5
        assert agg.delayed_initiatives == 1

    def test_pillar_progress(self, source):
        agg = score_strategy(COMPANY_ID, _input(), source)
        assert len(agg.pillar_progress) == 1
        pillar = agg.pillar_progress[0]
        assert pillar.progress == 80
        assert pillar.status == "on_track"
        assert pillar.objectives_count == 5
        assert pillar.completed_objectives == 4

    def test_other_entity_sees_nothing(self, source):
        agg = score_strategy(COMPANY_ID, _input(entity_id="sub-2"), source)
        assert agg.total_plans == 0
        assert agg.score == 0.0

    def test_group_sees_all_plans(self):
        plans = [
            {"scope": "subsidiary", "subsidiary_id": "a"},
            {"scope": "department", "department_id": "b"},
        ]
        assert len(filter_plans(plans, _input(level="group", entity_id="acme"))) == 2

    def test_department_scope_matches_department_id(self):
        plans = [
            {"scope": "department", "department_id": "dept-1"},
            {"scope": "subsidiary", "subsidiary_id": "dept-1"},
        ]
        assert filter_plans(plans, _input(level="department", entity_id="dept-1")) == [plans[0]]

    def test_empty(self):
        agg = summarize_plans([])
        assert agg.score == 0.0
        assert agg.average_pillar_progress == 0.0

    def test_missing_progress_counts_as_zero(self):
        agg = summarize_plans([{"pillars": [{"id": "p", "name": "P", "progress": None}]}])
        assert agg.average_pillar_progress == 0.0
        assert agg.pillar_progress[0].status == "delayed"


# =============================================================================
# OKR
# =============================================================================


class TestOKRScorer:
    def test_golden_score(self, source):
        agg = score_okrs(COMPANY_ID, _input(), source)
        assert agg.score == pytest.approx(EXPECTED_OKR)
        assert agg.total_objectives == 1
        assert agg.on_track_objectives == 1
        assert agg.total_key_results == 2
        assert agg.completed_key_results == 1
        assert agg.at_risk_key_results == 1

    def test_quarter_filter(self, source):
        assert score_okrs(COMPANY_ID, _input(quarter=1), source).total_objectives == 1
        assert score_okrs(COMPANY_ID, _input(quarter=2), source).total_objectives == 0

    def test_score_capped_at_100(self):
        agg = summarize_objectives([{"score": 1.0, "status": "completed"}])
        assert agg.score == 100.0

    def test_group_uses_all_levels(self):
        objectives = [{"level": "company"}, {"level": "subsidiary", "owner_id": "x"}]
        assert len(filter_objectives(objectives, _input(level="group", entity_id="acme"))) == 2

    def test_by_level_summary(self):
        agg = summarize_objectives(
            [
                {"level": "company", "score": 0.7, "status": "completed"},
                {"level": "company", "score": 0.3, "status": "at_risk"},
            ]
        )
        summary = agg.by_level["company"]
        assert summary.objectives_count == 2
        assert summary.average_score == pytest.approx(0.5)
        assert summary.completion_rate == pytest.approx(50.0)

    def test_empty(self):
        agg = summarize_objectives([])
        assert agg.score == 0.0
        assert agg.alignment_score == 100.0
        assert agg.cascading_depth == 0


class TestOKRAlignment:
    def test_no_parented_objectives_is_fully_aligned(self):
        assert okr_alignment([{"id": "a"}]) == 100.0

    def test_at_risk_child_of_healthy_parent_is_misaligned(self):
        objectives = [
            {"id": "p", "status": "on_track"},
            {"id": "c1", "parent_objective_id": "p", "status": "at_risk"},
            {"id": "c2", "parent_objective_id": "p", "status": "on_track"},
        ]
        assert okr_alignment(objectives) == pytest.approx(50.0)

    def test_at_risk_child_of_at_risk_parent_is_aligned(self):
        objectives = [
            {"id": "p", "status": "at_risk"},
            {"id": "c", "parent_objective_id": "p", "status": "at_risk"},
        ]
        assert okr_alignment(objectives) == 100.0

    def test_missing_parent_counts_against(self):
        objectives = [{"id": "c", "parent_objective_id": "elsewhere", "status": "on_track"}]
        assert okr_alignment(objectives) == 0.0


class TestCascadingDepth:
    def test_chain(self):
        objectives = [
            {"id": "a"},
            {"id": "b", "parent_objective_id": "a"},
            {"id": "c", "parent_objective_id": "b"},
            {"id": "d", "parent_objective_id": "a"},
        ]
        assert cascading_depth(objectives) == 3

    def test_self_reference_terminates(self):
        objectives = [{"id": "a"}, {"id": "b", "parent_objective_id": "b"}]
        assert cascading_depth(objectives) == 1

    def test_cycle_below_root_terminates(self):
        objectives = [
            {"id": "root"},
            {"id": "x", "parent_objective_id": "root"},
            {"id": "y", "parent_objective_id": "x"},
            {"id": "x", "parent_objective_id": "y"},
        ]
        assert cascading_depth(objectives) == 3

    def test_pure_cycle_has_no_roots(self):
        objectives = [
            {"id": "a", "parent_objective_id": "b"},
            {"id": "b", "parent_objective_id": "a"},
        ]
        assert cascading_depth(objectives) == 0


# =============================================================================
# KPI
# =============================================================================


class TestKPIScore:
    def test_higher_is_better(self):
        assert kpi_score(_kpi("higher_is_better", 200, 150)) == pytest.approx(75.0)

    def test_higher_is_better_capped(self):
        assert kpi_score(_kpi("higher_is_better", 100, 250)) == 100.0

    def test_higher_is_better_zero_target(self):
        assert kpi_score(_kpi("higher_is_better", 0, 5)) == 100.0
        assert kpi_score(_kpi("higher_is_better", 0, 0)) == 0.0

    def test_lower_is_better(self):
        assert kpi_score(_kpi("lower_is_better", 50, 100)) == pytest.approx(50.0)

    def test_lower_is_better_zero_current(self):
        assert kpi_score(_kpi("lower_is_better", 10, 0)) == 100.0

    def test_lower_is_better_zero_target(self):
        assert kpi_score(_kpi("lower_is_better", 0, 10)) == 0.0

    def test_other_direction_is_fixed(self):
        assert kpi_score(_kpi("target_range", 10, 10)) == 50.0

    def test_missing_values_score_zero(self):
        assert kpi_score({"direction": "higher_is_better", "target": {"value": 10}}) == 0.0
        assert kpi_score({"direction": "higher_is_better", "current_value": 10}) == 0.0


class TestKPIScorer:
    def test_golden_score(self, source):
        agg = score_kpis(COMPANY_ID, _input(), source)
        assert agg.score == pytest.approx(EXPECTED_KPI)
        assert agg.total_kpis == 1
        assert agg.on_target_count == 1
        assert agg.improving_count == 1
        assert agg.by_category["financial"].performance_status == "exceeding"

    def test_inactive_kpis_excluded(self, source):
        agg = score_kpis(COMPANY_ID, _input(), source)
        assert all(c.kpi_count == 1 for c in agg.by_category.values())

    def test_kpis_without_data_do_not_dilute_average(self):
        agg = summarize_kpis(
            [
                _kpi("higher_is_better", 100, 80, category="ops"),
                {"direction": "higher_is_better", "category": "ops", "current_performance": "no_data"},
            ]
        )
        assert agg.average_score == pytest.approx(80.0)
        assert agg.no_data_count == 1
        assert agg.by_category["ops"].kpi_count == 2

    def test_uncategorized_bucket(self):
        agg = summarize_kpis([_kpi("higher_is_better", 100, 50)])
        assert "uncategorized" in agg.by_category

    def test_health_score_excludes_no_data(self):
        agg = summarize_kpis(
            [
                _kpi("higher_is_better", 100, 100, current_performance="exceeding"),
                _kpi("higher_is_better", 100, 10, current_performance="critical"),
                {"current_performance": "no_data"},
            ]
        )
        assert agg.health_score == pytest.approx(50.0)

    def test_owner_scope_for_individuals(self):
        kpis = [{"scope": "individual", "owner_id": "u-1"}, {"scope": "individual", "owner_id": "u-2"}]
        assert filter_kpis(kpis, _input(level="individual", entity_id="u-1")) == [kpis[0]]

    def test_empty(self):
        agg = summarize_kpis([])
        assert agg.score == 0.0
        assert agg.health_score == 0.0
