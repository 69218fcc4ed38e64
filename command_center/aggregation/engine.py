"""
Performance Aggregation Engine.

Combines the three domain scores of an entity into one weighted composite and
builds the views on top of it:

- aggregate()        composite score, rating, health and trend for one entity
- build_hierarchy()  composite scores for the whole org tree, group downwards
- compare()          ranking and summary statistics across entities
- heatmap()          entities x domains grid with global min/max
- save_aggregation() / get_aggregation()  explicit persistence pass-through

The engine holds no mutable state between calls. Independent work (the three
scorers, sibling entities) fans out over short-lived thread pools; every read
against an external store passes through one shared semaphore so the fan-out
never exceeds `max_concurrent_reads` in-flight reads. The semaphore only
guards leaf reads, so nested pools cannot deadlock on it.

Usage:
    engine = AggregationEngine.from_source(source, store)
    result = engine.aggregate("acme", AggregationInput(...), actor_id="u-1")
    engine.save_aggregation("acme", result)
"""

import contextvars
import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from datetime import datetime, timezone
from functools import partial
from typing import Any

from command_center import config

from . import stats
from .constants import (
    AGGREGATION_METHOD,
    MAX_HIERARCHY_DEPTH,
    AggregationLevel,
    HealthIndicator,
    PerformanceDomain,
    TrendIndicator,
    cap_hierarchy_depth,
    get_child_level,
    get_health_from_score,
    get_rating_from_score,
    get_trend_from_change,
)
from .errors import AggregationTimeoutError
from .models import (
    AggregatedPerformance,
    AggregationInput,
    ChildAggregationSummary,
    ComparisonEntity,
    EntityRanking,
    HeatmapCell,
    HeatmapColumn,
    HeatmapRow,
    KPIAggregation,
    OKRAggregation,
    PerformanceComparison,
    PerformanceHealth,
    PerformanceHeatmap,
    PerformanceHierarchy,
    PerformanceNode,
    PerformanceWeights,
    StrategyAggregation,
)
from .period import Period, aggregation_key
from .scorers import score_kpis, score_okrs, score_strategy
from .sources import InMemorySource, KPIRepository, OKRRepository, OrgDirectory, StrategyRepository
from .store import AggregationStore

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"

# Worse buckets rank higher; NO_DATA never wins over a bucket derived from data
_HEALTH_SEVERITY = {
    HealthIndicator.CRITICAL: 3,
    HealthIndicator.WARNING: 2,
    HealthIndicator.HEALTHY: 1,
    HealthIndicator.NO_DATA: 0,
}


# =============================================================================
# DEADLINE
# =============================================================================


class Deadline:
    """A point on the monotonic clock after which a computation is abandoned."""

    def __init__(self, timeout_s: float):
        self.timeout_s = timeout_s
        self.expires_at = time.monotonic() + timeout_s

    @classmethod
    def after(cls, timeout_s: float | None) -> "Deadline | None":
        return cls(timeout_s) if timeout_s is not None else None

    def remaining(self) -> float:
        return max(0.0, self.expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return time.monotonic() >= self.expires_at


class _ThrottledReader:
    """Proxy that holds the shared read semaphore around every method call."""

    def __init__(self, target: Any, semaphore: threading.BoundedSemaphore):
        self._target = target
        self._semaphore = semaphore

    def __getattr__(self, name: str):
        attr = getattr(self._target, name)
        if not callable(attr):
            return attr

        def call(*args, **kwargs):
            with self._semaphore:
                return attr(*args, **kwargs)

        return call


# =============================================================================
# PURE HELPERS
# =============================================================================


def calculate_combined_score(
    strategy_score: float, okr_score: float, kpi_score: float, weights: PerformanceWeights
) -> float:
    return (
        strategy_score * weights.strategy + okr_score * weights.okr + kpi_score * weights.kpi
    )


def worst_health(*indicators: HealthIndicator) -> HealthIndicator:
    """
    Worst of the given buckets: critical > warning > healthy.

    NO_DATA is reported per domain but does not drive the overall value;
    if every domain lacks data the overall value is HEALTHY.
    """
    worst = max(indicators, key=lambda h: _HEALTH_SEVERITY[h])
    if worst is HealthIndicator.NO_DATA:
        return HealthIndicator.HEALTHY
    return worst


def calculate_health(
    strategy: StrategyAggregation, okr: OKRAggregation, kpi: KPIAggregation
) -> PerformanceHealth:
    strategy_health = get_health_from_score(strategy.score)
    okr_health = get_health_from_score(okr.score)
    kpi_health = get_health_from_score(kpi.score)

    return PerformanceHealth(
        overall=worst_health(strategy_health, okr_health, kpi_health),
        strategy_health=strategy_health,
        okr_health=okr_health,
        kpi_health=kpi_health,
        critical_issues=strategy.at_risk_objectives + okr.at_risk_objectives + kpi.critical_count,
        warning_issues=(
            strategy.delayed_initiatives + okr.at_risk_key_results + kpi.below_target_count
        ),
        healthy_items=(
            strategy.completed_objectives
            + strategy.on_track_objectives
            + okr.completed_objectives
            + okr.on_track_objectives
            + kpi.exceeding_count
            + kpi.on_target_count
        ),
        no_data_items=kpi.no_data_count,
    )


def _node_from(agg: AggregatedPerformance) -> PerformanceNode:
    return PerformanceNode(
        id=agg.entity_id,
        name=agg.entity_name,
        level=agg.level,
        combined_score=agg.combined_score,
        strategy_score=agg.strategy_score,
        okr_score=agg.okr_score,
        kpi_score=agg.kpi_score,
        rating=agg.rating,
        trend=agg.trend,
        health=agg.health.overall,
    )


def count_nodes(node: PerformanceNode) -> int:
    return 1 + sum(count_nodes(child) for child in node.children)


def tree_depth(node: PerformanceNode, depth: int = 1) -> int:
    """Longest root-to-leaf path, counting the root as 1."""
    if not node.children:
        return depth
    return max(tree_depth(child, depth + 1) for child in node.children)


def _domain_label(domain: PerformanceDomain) -> str:
    return "Overall" if domain is PerformanceDomain.COMBINED else domain.value.capitalize()


# =============================================================================
# ENGINE
# =============================================================================


class AggregationEngine:
    """
    Composite aggregation over injected repositories.

    Args:
        strategy, okrs, kpis: read-only domain repositories
        directory: organizational directory (child entities, names)
        store: where prior-period records are read and results are saved
        max_workers: bound on concurrently aggregated sibling entities
        max_concurrent_reads: bound on in-flight reads across all pools
        max_depth: deepest hierarchy level built (root = 1), never above 4
        clock: returns the calculation timestamp (UTC now by default)
    """

    def __init__(
        self,
        strategy: StrategyRepository,
        okrs: OKRRepository,
        kpis: KPIRepository,
        directory: OrgDirectory,
        store: AggregationStore,
        *,
        max_workers: int = config.MAX_WORKERS,
        max_concurrent_reads: int = config.MAX_CONCURRENT_READS,
        max_depth: int = MAX_HIERARCHY_DEPTH,
        group_entity_name: str = config.GROUP_ENTITY_NAME,
        clock: Callable[[], datetime] | None = None,
    ):
        reads = threading.BoundedSemaphore(max_concurrent_reads)
        self.strategy = _ThrottledReader(strategy, reads)
        self.okrs = _ThrottledReader(okrs, reads)
        self.kpis = _ThrottledReader(kpis, reads)
        self.directory = _ThrottledReader(directory, reads)
        self.store = store
        self._store_reader = _ThrottledReader(store, reads)
        self.max_workers = max_workers
        self.max_depth = cap_hierarchy_depth(max_depth)
        self.group_entity_name = group_entity_name
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_source(
        cls, source: InMemorySource, store: AggregationStore, **kwargs
    ) -> "AggregationEngine":
        """Wire every read contract to one source object."""
        return cls(source, source, source, source, store, **kwargs)

    # -------------------------------------------------------------------------
    # Fan-out
    # -------------------------------------------------------------------------

    def _run_all(
        self, tasks: list[Callable[[], Any]], max_workers: int, deadline: Deadline | None
    ) -> list:
        """
        Run independent tasks concurrently, returning results in task order.

        The first task exception propagates unchanged. If the deadline passes
        first, pending tasks are cancelled and AggregationTimeoutError raised.
        """
        if not tasks:
            return []
        if deadline is not None and deadline.expired:
            raise AggregationTimeoutError(f"Deadline of {deadline.timeout_s}s expired")

        executor = ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(tasks))))
        try:
            # Each task runs in its own copy of the caller's context (run ID etc.)
            futures = [
                executor.submit(contextvars.copy_context().run, task) for task in tasks
            ]
            done, pending = wait(
                futures,
                timeout=deadline.remaining() if deadline is not None else None,
                return_when=FIRST_EXCEPTION,
            )
            if pending:
                for future in done:
                    if future.exception() is not None:
                        raise future.exception()
                logger.warning(
                    "Deadline of %ss expired with %d of %d tasks pending",
                    deadline.timeout_s,
                    len(pending),
                    len(tasks),
                )
                raise AggregationTimeoutError(f"Deadline of {deadline.timeout_s}s expired")
            return [future.result() for future in futures]
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    # -------------------------------------------------------------------------
    # Composite aggregation
    # -------------------------------------------------------------------------

    def score_domains(
        self,
        company_id: str,
        agg_input: AggregationInput,
        deadline: Deadline | None = None,
    ) -> tuple[StrategyAggregation, OKRAggregation, KPIAggregation]:
        """Run the three domain scorers concurrently."""
        strategy_agg, okr_agg, kpi_agg = self._run_all(
            [
                partial(score_strategy, company_id, agg_input, self.strategy),
                partial(score_okrs, company_id, agg_input, self.okrs),
                partial(score_kpis, company_id, agg_input, self.kpis),
            ],
            3,
            deadline,
        )
        return strategy_agg, okr_agg, kpi_agg

    def aggregate(
        self,
        company_id: str,
        agg_input: AggregationInput,
        actor_id: str,
        deadline: Deadline | None = None,
    ) -> AggregatedPerformance:
        """
        Compute the composite performance of one entity for one period.

        Raises InvalidWeightsError for weights that do not sum to 1.0.
        Nothing is persisted; call save_aggregation() to keep the result.
        """
        weights = (agg_input.weights or PerformanceWeights.default()).validate()
        period = agg_input.period

        strategy_agg, okr_agg, kpi_agg = self.score_domains(company_id, agg_input, deadline)

        combined = calculate_combined_score(
            strategy_agg.score, okr_agg.score, kpi_agg.score, weights
        )

        children = None
        if agg_input.include_children:
            children = self._child_summaries(company_id, agg_input, deadline)

        result = AggregatedPerformance(
            id=aggregation_key(agg_input.entity_id, agg_input.fiscal_year, agg_input.quarter),
            company_id=company_id,
            level=agg_input.level,
            entity_id=agg_input.entity_id,
            entity_name=agg_input.entity_name,
            fiscal_year=agg_input.fiscal_year,
            quarter=agg_input.quarter,
            month=agg_input.month,
            period_start=period.start,
            period_end=period.end,
            strategy_score=strategy_agg.score,
            okr_score=okr_agg.score,
            kpi_score=kpi_agg.score,
            combined_score=combined,
            weights=weights,
            rating=get_rating_from_score(combined),
            trend=TrendIndicator.STABLE,
            strategy_count=strategy_agg.total_plans,
            okr_count=okr_agg.total_objectives,
            kpi_count=kpi_agg.total_kpis,
            health=calculate_health(strategy_agg, okr_agg, kpi_agg),
            child_aggregations=children,
            calculated_at=self._clock(),
            calculated_by=actor_id,
        )

        previous = self._previous_aggregation(company_id, agg_input.entity_id, period)
        if previous is not None:
            result.previous_score = previous.combined_score
            result.score_change = combined - previous.combined_score
            result.score_change_percent = (
                result.score_change / previous.combined_score * 100
                if previous.combined_score != 0
                else 0.0
            )
            result.trend = get_trend_from_change(result.score_change_percent)

        logger.debug(
            "Aggregated %s %s for %s: combined=%.1f rating=%s trend=%s",
            agg_input.level.value,
            agg_input.entity_id,
            period.label(),
            combined,
            result.rating.value,
            result.trend.value,
        )
        return result

    def _previous_aggregation(
        self, company_id: str, entity_id: str, period: Period
    ) -> AggregatedPerformance | None:
        prev = period.previous()
        return self._store_reader.get(
            company_id, aggregation_key(entity_id, prev.fiscal_year, prev.quarter)
        )

    def _child_summaries(
        self, company_id: str, agg_input: AggregationInput, deadline: Deadline | None
    ) -> list[ChildAggregationSummary]:
        child_level = get_child_level(agg_input.level)
        if child_level is None:
            return []

        # Subsidiaries hang off the whole company, so group queries are unscoped
        parent_id = None if agg_input.level is AggregationLevel.GROUP else agg_input.entity_id
        entities = self.directory.list_child_entities(company_id, child_level, parent_id)

        child_aggs = self._run_all(
            [
                partial(
                    self.aggregate,
                    company_id,
                    agg_input.for_entity(child_level, entity["id"], entity["name"]),
                    SYSTEM_ACTOR,
                    deadline,
                )
                for entity in entities
            ],
            self.max_workers,
            deadline,
        )

        summaries = [
            ChildAggregationSummary(
                entity_id=child.entity_id,
                entity_name=child.entity_name,
                level=child_level,
                combined_score=child.combined_score,
                rating=child.rating,
                trend=child.trend,
            )
            for child in child_aggs
        ]
        summaries.sort(key=lambda s: s.combined_score, reverse=True)
        return summaries

    # -------------------------------------------------------------------------
    # Hierarchy
    # -------------------------------------------------------------------------

    def build_hierarchy(
        self,
        company_id: str,
        fiscal_year: int,
        quarter: int | None = None,
        deadline: Deadline | None = None,
    ) -> PerformanceHierarchy:
        """
        Aggregate the org tree from the group level down.

        Built breadth-first: every node of one depth is aggregated
        concurrently before the next depth starts. Nodes deeper than
        `max_depth` are never built, whatever the directory returns.
        """
        started = time.monotonic()
        root_agg = self.aggregate(
            company_id,
            AggregationInput(
                level=AggregationLevel.GROUP,
                entity_id=company_id,
                entity_name=self.group_entity_name,
                fiscal_year=fiscal_year,
                quarter=quarter,
                include_children=self.max_depth > 1,
            ),
            SYSTEM_ACTOR,
            deadline,
        )
        root = _node_from(root_agg)

        frontier = [(root, root_agg)]
        depth = 1
        while frontier and depth < self.max_depth:
            parents = []
            tasks = []
            for node, agg in frontier:
                for child in agg.child_aggregations or []:
                    parents.append(node)
                    tasks.append(
                        partial(
                            self.aggregate,
                            company_id,
                            AggregationInput(
                                level=child.level,
                                entity_id=child.entity_id,
                                entity_name=child.entity_name,
                                fiscal_year=fiscal_year,
                                quarter=quarter,
                                include_children=depth + 1 < self.max_depth,
                            ),
                            SYSTEM_ACTOR,
                            deadline,
                        )
                    )

            next_frontier = []
            for parent, child_agg in zip(parents, self._run_all(tasks, self.max_workers, deadline)):
                child_node = _node_from(child_agg)
                parent.children.append(child_node)
                next_frontier.append((child_node, child_agg))
            frontier = next_frontier
            depth += 1

        hierarchy = PerformanceHierarchy(
            root=root,
            depth=tree_depth(root),
            total_nodes=count_nodes(root),
            aggregation_method=AGGREGATION_METHOD,
        )
        logger.info(
            "Built performance hierarchy for %s FY%s: %d nodes, depth %d in %.2fs",
            company_id,
            fiscal_year,
            hierarchy.total_nodes,
            hierarchy.depth,
            time.monotonic() - started,
        )
        return hierarchy

    # -------------------------------------------------------------------------
    # Cross-entity views
    # -------------------------------------------------------------------------

    def _aggregate_entities(
        self,
        company_id: str,
        entity_ids: list[str],
        level: AggregationLevel,
        fiscal_year: int,
        quarter: int | None,
        deadline: Deadline | None,
    ) -> list[AggregatedPerformance]:
        names = [self.directory.get_entity_name(company_id, eid) or eid for eid in entity_ids]
        return self._run_all(
            [
                partial(
                    self.aggregate,
                    company_id,
                    AggregationInput(
                        level=level,
                        entity_id=entity_id,
                        entity_name=name,
                        fiscal_year=fiscal_year,
                        quarter=quarter,
                    ),
                    SYSTEM_ACTOR,
                    deadline,
                )
                for entity_id, name in zip(entity_ids, names)
            ],
            self.max_workers,
            deadline,
        )

    def compare(
        self,
        company_id: str,
        entity_ids: list[str],
        domain: PerformanceDomain,
        fiscal_year: int,
        quarter: int | None = None,
        level: AggregationLevel = AggregationLevel.SUBSIDIARY,
        deadline: Deadline | None = None,
    ) -> PerformanceComparison:
        """
        Rank entities on one domain. Requires at least two entity ids.

        Percentile of rank index i among N entities is (N - i) / N * 100.
        """
        if len(entity_ids) < 2:
            raise ValueError("compare() needs at least two entities")
        domain = PerformanceDomain(domain)
        level = AggregationLevel(level)

        aggs = self._aggregate_entities(company_id, entity_ids, level, fiscal_year, quarter, deadline)
        entities = [
            ComparisonEntity(
                entity_id=agg.entity_id,
                entity_name=agg.entity_name,
                level=level,
                score=agg.score_for(domain),
                rating=get_rating_from_score(agg.score_for(domain)),
                trend=agg.trend,
            )
            for agg in aggs
        ]
        scores = [e.score for e in entities]

        entities.sort(key=lambda e: e.score, reverse=True)
        total = len(entities)
        for i, entity in enumerate(entities):
            entity.rank = i + 1
            entity.percentile = (total - i) / total * 100

        return PerformanceComparison(
            entities=entities,
            domain=domain,
            period=Period(fiscal_year, quarter=quarter),
            rankings=[
                EntityRanking(e.rank, e.entity_id, e.entity_name, e.score) for e in entities
            ],
            average=stats.mean(scores),
            median=stats.median(scores),
            standard_deviation=stats.population_std(scores),
            top_performer=entities[0].entity_name,
            bottom_performer=entities[-1].entity_name,
        )

    def heatmap(
        self,
        company_id: str,
        entity_ids: list[str],
        domains: list[PerformanceDomain],
        fiscal_year: int,
        quarter: int | None = None,
        level: AggregationLevel = AggregationLevel.SUBSIDIARY,
        deadline: Deadline | None = None,
    ) -> PerformanceHeatmap:
        """Entities x domains grid; min/max span every cell for color scaling."""
        domains = [PerformanceDomain(d) for d in domains]
        level = AggregationLevel(level)

        aggs = self._aggregate_entities(company_id, entity_ids, level, fiscal_year, quarter, deadline)

        rows = [HeatmapRow(id=a.entity_id, label=a.entity_name, level=level) for a in aggs]
        columns = [HeatmapColumn(id=d.value, label=_domain_label(d), domain=d) for d in domains]
        cells = []
        min_value, max_value = 100.0, 0.0
        for agg in aggs:
            for domain in domains:
                value = agg.score_for(domain)
                min_value = min(min_value, value)
                max_value = max(max_value, value)
                cells.append(
                    HeatmapCell(
                        row_id=agg.entity_id,
                        column_id=domain.value,
                        value=value,
                        rating=get_rating_from_score(value),
                        trend=agg.trend,
                        tooltip=f"{agg.entity_name}: {value:.1f}",
                    )
                )

        return PerformanceHeatmap(
            rows=rows, columns=columns, cells=cells, min_value=min_value, max_value=max_value
        )

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def save_aggregation(self, company_id: str, record: AggregatedPerformance) -> None:
        """Persist under the record's key, replacing any earlier record."""
        self.store.put(company_id, record)
        logger.info("Saved aggregation %s", record.id)

    def get_aggregation(
        self, company_id: str, entity_id: str, fiscal_year: int, quarter: int | None = None
    ) -> AggregatedPerformance | None:
        return self.store.get(company_id, aggregation_key(entity_id, fiscal_year, quarter))
