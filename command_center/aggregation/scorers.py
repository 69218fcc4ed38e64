"""
Domain scorers: strategy execution, OKR attainment, KPI attainment.

Each scorer fetches the raw records for an entity's scope from its repository
and reduces them into a DomainAggregation with a 0-100 `score`. The reducers
(summarize_*) are pure functions of the records so they can be tested without
a repository. Absent data is a value: nothing to score yields zero counts and
a zero score, never an exception.
"""

import logging

from .constants import (
    KPI_FIXED_TARGET_SCORE,
    OKR_LEVEL_NAMES,
    OKR_SUCCESS_SCORE,
    STRATEGY_INITIATIVE_WEIGHT,
    STRATEGY_OBJECTIVE_WEIGHT,
    STRATEGY_PILLAR_WEIGHT,
    AggregationLevel,
    clamp_score,
    get_category_status,
    get_pillar_status,
)
from .models import (
    AggregationInput,
    KPIAggregation,
    KPICategorySummary,
    OKRAggregation,
    OKRLevelSummary,
    PillarProgress,
    StrategyAggregation,
)
from .sources import KPIRepository, OKRRepository, StrategyRepository

logger = logging.getLogger(__name__)


def _rate(part: int, whole: int) -> float:
    return part / whole * 100 if whole > 0 else 0.0


# =============================================================================
# STRATEGY
# =============================================================================


def filter_plans(plans: list[dict], agg_input: AggregationInput) -> list[dict]:
    """Plans in scope for the entity; the group level sees every plan."""
    if agg_input.level is AggregationLevel.GROUP:
        return list(plans)
    return [
        p
        for p in plans
        if p.get("scope") == agg_input.level.value
        and agg_input.entity_id in (p.get("subsidiary_id"), p.get("department_id"))
    ]


def summarize_plans(plans: list[dict]) -> StrategyAggregation:
    """Walk pillar -> objective -> initiative trees into one StrategyAggregation."""
    agg = StrategyAggregation(
        total_plans=len(plans),
        active_plans=sum(1 for p in plans if p.get("status") == "active"),
        completed_plans=sum(1 for p in plans if p.get("status") == "completed"),
    )

    total_progress = 0.0
    for plan in plans:
        for pillar in plan.get("pillars") or []:
            progress = pillar.get("progress") or 0
            objectives = pillar.get("objectives") or []
            agg.pillar_progress.append(
                PillarProgress(
                    pillar_id=pillar.get("id", ""),
                    pillar_name=pillar.get("name", ""),
                    progress=progress,
                    objectives_count=len(objectives),
                    completed_objectives=sum(
                        1 for o in objectives if o.get("status") == "completed"
                    ),
                    status=get_pillar_status(progress),
                )
            )
            total_progress += progress

            for objective in objectives:
                agg.total_objectives += 1
                status = objective.get("status")
                if status == "completed":
                    agg.completed_objectives += 1
                elif status == "on_track":
                    agg.on_track_objectives += 1
                elif status == "at_risk":
                    agg.at_risk_objectives += 1

                for initiative in objective.get("initiatives") or []:
                    agg.total_initiatives += 1
                    status = initiative.get("status")
                    if status == "completed":
                        agg.completed_initiatives += 1
                    elif status == "on_track":
                        agg.on_track_initiatives += 1
                    elif status == "delayed":
                        agg.delayed_initiatives += 1

    pillar_count = len(agg.pillar_progress)
    agg.average_pillar_progress = total_progress / pillar_count if pillar_count else 0.0

    objective_rate = _rate(agg.completed_objectives, agg.total_objectives)
    initiative_rate = _rate(agg.completed_initiatives, agg.total_initiatives)
    agg.score = clamp_score(
        agg.average_pillar_progress * STRATEGY_PILLAR_WEIGHT
        + objective_rate * STRATEGY_OBJECTIVE_WEIGHT
        + initiative_rate * STRATEGY_INITIATIVE_WEIGHT
    )
    return agg


def score_strategy(
    company_id: str, agg_input: AggregationInput, repository: StrategyRepository
) -> StrategyAggregation:
    plans = filter_plans(repository.list_plans(company_id, agg_input.fiscal_year), agg_input)
    agg = summarize_plans(plans)
    logger.debug(
        "Strategy score %.1f for %s (%d plans)", agg.score, agg_input.entity_id, agg.total_plans
    )
    return agg


# =============================================================================
# OKR
# =============================================================================


def filter_objectives(objectives: list[dict], agg_input: AggregationInput) -> list[dict]:
    if agg_input.level is AggregationLevel.GROUP:
        return list(objectives)
    level_name = OKR_LEVEL_NAMES[agg_input.level]
    return [
        o
        for o in objectives
        if o.get("level") == level_name
        and agg_input.entity_id in (o.get("owner_id"), o.get("department_id"))
    ]


def okr_alignment(objectives: list[dict]) -> float:
    """
    Percentage of parented objectives that are aligned with their parent.

    A child is misaligned only when it is at risk while its parent is not.
    Children whose parent is outside the set count against the score.
    """
    with_parent = [o for o in objectives if o.get("parent_objective_id")]
    if not with_parent:
        return 100.0

    by_id = {o.get("id"): o for o in objectives}
    aligned = 0
    for objective in with_parent:
        parent = by_id.get(objective["parent_objective_id"])
        if parent is None:
            continue
        if objective.get("status") != "at_risk" or parent.get("status") == "at_risk":
            aligned += 1
    return aligned / len(with_parent) * 100


def cascading_depth(objectives: list[dict]) -> int:
    """
    Longest parent -> child chain, counted in objectives, from any root.

    Iterative walk with a fresh visited set per root; a node seen earlier in
    the same walk contributes nothing, so cyclic parent links terminate.
    """
    children_of: dict[str, list[str]] = {}
    for objective in objectives:
        parent_id = objective.get("parent_objective_id")
        if parent_id:
            children_of.setdefault(parent_id, []).append(objective.get("id"))

    roots = [o.get("id") for o in objectives if not o.get("parent_objective_id")]
    deepest = 0
    for root_id in roots:
        visited: set[str] = set()
        stack = [(root_id, 1)]
        while stack:
            node_id, depth = stack.pop()
            if node_id in visited:
                continue
            visited.add(node_id)
            deepest = max(deepest, depth)
            for child_id in children_of.get(node_id, []):
                if child_id not in visited:
                    stack.append((child_id, depth + 1))
    return deepest


def summarize_objectives(objectives: list[dict]) -> OKRAggregation:
    """Reduce objectives and their key results into one OKRAggregation."""
    agg = OKRAggregation(total_objectives=len(objectives))

    total_objective_score = 0.0
    total_kr_score = 0.0
    levels: dict[str, dict] = {}

    for objective in objectives:
        status = objective.get("status")
        if status == "completed":
            agg.completed_objectives += 1
        elif status == "on_track":
            agg.on_track_objectives += 1
        elif status == "at_risk":
            agg.at_risk_objectives += 1
        elif status == "not_started":
            agg.not_started_objectives += 1

        score = objective.get("score") or 0
        total_objective_score += score

        for kr in objective.get("key_results") or []:
            kr_score = kr.get("score") or 0
            agg.total_key_results += 1
            total_kr_score += kr_score
            if kr_score >= 1.0:
                agg.completed_key_results += 1
            elif kr_score >= OKR_SUCCESS_SCORE:
                agg.on_track_key_results += 1
            else:
                agg.at_risk_key_results += 1

        bucket = levels.setdefault(
            objective.get("level") or "unknown", {"count": 0, "score": 0.0, "completed": 0}
        )
        bucket["count"] += 1
        bucket["score"] += score
        if status == "completed":
            bucket["completed"] += 1

    if agg.total_objectives:
        agg.average_objective_score = total_objective_score / agg.total_objectives
    if agg.total_key_results:
        agg.average_key_result_score = total_kr_score / agg.total_key_results

    # 0.7 is full success on the OKR convention, so rescale against it
    agg.score = clamp_score(min(100.0, agg.average_objective_score / OKR_SUCCESS_SCORE * 100))

    agg.by_level = {
        name: OKRLevelSummary(
            level=name,
            objectives_count=bucket["count"],
            average_score=bucket["score"] / bucket["count"],
            completion_rate=_rate(bucket["completed"], bucket["count"]),
        )
        for name, bucket in levels.items()
    }
    agg.alignment_score = okr_alignment(objectives)
    agg.cascading_depth = cascading_depth(objectives)
    return agg


def score_okrs(
    company_id: str, agg_input: AggregationInput, repository: OKRRepository
) -> OKRAggregation:
    raw = repository.list_objectives(company_id, agg_input.fiscal_year, agg_input.quarter)
    agg = summarize_objectives(filter_objectives(raw, agg_input))
    logger.debug(
        "OKR score %.1f for %s (%d objectives)", agg.score, agg_input.entity_id, agg.total_objectives
    )
    return agg


# =============================================================================
# KPI
# =============================================================================


def filter_kpis(kpis: list[dict], agg_input: AggregationInput) -> list[dict]:
    if agg_input.level is AggregationLevel.GROUP:
        return list(kpis)
    return [
        k
        for k in kpis
        if k.get("scope") == agg_input.level.value
        and agg_input.entity_id in (k.get("subsidiary_id"), k.get("department_id"), k.get("owner_id"))
    ]


def _has_data(kpi: dict) -> bool:
    target = kpi.get("target") or {}
    return kpi.get("current_value") is not None and target.get("value") is not None


def kpi_score(kpi: dict) -> float:
    """
    Attainment of one KPI on a 0-100 scale.

    Zero targets and zero current values resolve to fixed scores so the
    result is never NaN or infinite.
    """
    if not _has_data(kpi):
        return 0.0

    target = kpi["target"]["value"]
    current = kpi["current_value"]
    direction = kpi.get("direction")

    if direction == "higher_is_better":
        if target == 0:
            return 100.0 if current > 0 else 0.0
        return clamp_score(current / target * 100)
    if direction == "lower_is_better":
        if current == 0:
            return 100.0
        if target == 0:
            return 0.0
        return clamp_score(target / current * 100)
    return KPI_FIXED_TARGET_SCORE


_PERFORMANCE_FIELDS = {
    "exceeding": "exceeding_count",
    "on_target": "on_target_count",
    "below_target": "below_target_count",
    "critical": "critical_count",
    "no_data": "no_data_count",
}

_TREND_FIELDS = {
    "up": "improving_count",
    "down": "declining_count",
    "stable": "stable_count",
}


def summarize_kpis(kpis: list[dict]) -> KPIAggregation:
    """Reduce KPI definitions into one KPIAggregation."""
    agg = KPIAggregation(
        total_kpis=len(kpis),
        active_kpis=sum(1 for k in kpis if k.get("status", "active") == "active"),
    )

    scores: list[float] = []
    categories: dict[str, list] = {}

    for kpi in kpis:
        bucket = _PERFORMANCE_FIELDS.get(kpi.get("current_performance"))
        if bucket:
            setattr(agg, bucket, getattr(agg, bucket) + 1)
        trend = _TREND_FIELDS.get(kpi.get("trend_direction"))
        if trend:
            setattr(agg, trend, getattr(agg, trend) + 1)

        category = categories.setdefault(kpi.get("category") or "uncategorized", [0, []])
        category[0] += 1
        if _has_data(kpi):
            value = kpi_score(kpi)
            scores.append(value)
            category[1].append(value)

    agg.average_score = sum(scores) / len(scores) if scores else 0.0
    agg.score = clamp_score(agg.average_score)
    agg.health_score = _rate(
        agg.exceeding_count + agg.on_target_count, agg.total_kpis - agg.no_data_count
    )

    for name, (count, category_scores) in categories.items():
        average = sum(category_scores) / len(category_scores) if category_scores else 0.0
        agg.by_category[name] = KPICategorySummary(
            category=name,
            kpi_count=count,
            average_score=average,
            performance_status=get_category_status(average),
        )
    return agg


def score_kpis(
    company_id: str, agg_input: AggregationInput, repository: KPIRepository
) -> KPIAggregation:
    kpis = filter_kpis(repository.list_active_kpis(company_id), agg_input)
    agg = summarize_kpis(kpis)
    logger.debug("KPI score %.1f for %s (%d KPIs)", agg.score, agg_input.entity_id, agg.total_kpis)
    return agg
