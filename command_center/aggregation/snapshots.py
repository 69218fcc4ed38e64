"""
Performance snapshots and trend analysis.

A snapshot is a dated copy of an entity's scores plus the three domain
breakdowns, taken on a daily/weekly/monthly/quarterly cadence. Snapshot ids
are deterministic per entity, frequency and calendar bucket, so taking a
second snapshot in the same bucket replaces the first.

calculate_trend() fits a least-squares line through the most recent
snapshots of one entity to classify direction, strength and volatility and to
project the next period's score.
"""

import dataclasses
import logging
import math
from datetime import datetime, timedelta, timezone

from . import stats
from .constants import (
    MIN_DATA_POINTS_FOR_TREND,
    SNAPSHOT_RETENTION_DAYS,
    TREND_PERIODS,
    AggregationLevel,
    PerformanceDomain,
    SnapshotFrequency,
    TrendIndicator,
    clamp_score,
    get_rating_from_score,
    get_trend_from_change,
)
from .engine import AggregationEngine, Deadline
from .models import (
    AggregationInput,
    PerformanceSnapshot,
    PerformanceTrend,
    SnapshotComparison,
    SnapshotFilters,
    TrendDataPoint,
)
from .period import fiscal_quarter_of, fiscal_year_of
from .store import SnapshotStore

logger = logging.getLogger(__name__)


def as_utc(d: datetime) -> datetime:
    """Treat a naive datetime as UTC; convert an aware one to UTC."""
    if d.tzinfo is None:
        return d.replace(tzinfo=timezone.utc)
    return d.astimezone(timezone.utc)


def week_number(d: datetime) -> int:
    """Week of the calendar year, with weeks starting on Sunday and Jan 1 in week 1."""
    jan1 = d.replace(month=1, day=1)
    days_since_jan1 = (d.date() - jan1.date()).days
    jan1_weekday = (jan1.weekday() + 1) % 7  # Sunday = 0
    return math.ceil((days_since_jan1 + jan1_weekday + 1) / 7)


def snapshot_id(entity_id: str, frequency: SnapshotFrequency, d: datetime) -> str:
    """
    Deterministic id for an entity's snapshot in the calendar bucket of `d`.

    Examples:
        acme_daily_20250714, acme_weekly_2025W29,
        acme_monthly_202507, acme_quarterly_2025Q3
    """
    frequency = SnapshotFrequency(frequency)
    if frequency is SnapshotFrequency.DAILY:
        return f"{entity_id}_daily_{d:%Y%m%d}"
    if frequency is SnapshotFrequency.WEEKLY:
        return f"{entity_id}_weekly_{d.year}W{week_number(d):02d}"
    if frequency is SnapshotFrequency.MONTHLY:
        return f"{entity_id}_monthly_{d:%Y%m}"
    quarter = (d.month - 1) // 3 + 1
    return f"{entity_id}_quarterly_{d.year}Q{quarter}"


class SnapshotService:
    """Takes, lists and analyses performance snapshots."""

    def __init__(
        self,
        engine: AggregationEngine,
        store: SnapshotStore,
        clock=None,
    ):
        self.engine = engine
        self.store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # -------------------------------------------------------------------------
    # CRUD
    # -------------------------------------------------------------------------

    def create_snapshot(
        self,
        company_id: str,
        level: AggregationLevel,
        entity_id: str,
        entity_name: str,
        frequency: SnapshotFrequency,
        actor_id: str,
        now: datetime | None = None,
        deadline: Deadline | None = None,
    ) -> PerformanceSnapshot:
        """
        Aggregate the entity for the current fiscal period and persist a snapshot.

        Quarterly snapshots aggregate the current fiscal quarter; monthly and
        daily ones the current month; weekly ones the whole fiscal year.
        """
        level = AggregationLevel(level)
        frequency = SnapshotFrequency(frequency)
        now = as_utc(now or self._clock())
        fiscal_year = fiscal_year_of(now)
        fiscal_quarter = fiscal_quarter_of(now.month)

        aggregation = self.engine.aggregate(
            company_id,
            AggregationInput(
                level=level,
                entity_id=entity_id,
                entity_name=entity_name,
                fiscal_year=fiscal_year,
                quarter=fiscal_quarter if frequency is SnapshotFrequency.QUARTERLY else None,
                month=(
                    now.month
                    if frequency in (SnapshotFrequency.MONTHLY, SnapshotFrequency.DAILY)
                    else None
                ),
            ),
            actor_id,
            deadline,
        )

        comparison = None
        previous = self._latest_snapshot(company_id, entity_id, frequency)
        if previous is not None:
            change = aggregation.combined_score - previous.combined_score
            change_percent = (
                change / previous.combined_score * 100 if previous.combined_score != 0 else 0.0
            )
            comparison = SnapshotComparison(
                period="previous_period",
                previous_score=previous.combined_score,
                current_score=aggregation.combined_score,
                change=change,
                change_percent=change_percent,
                trend=get_trend_from_change(change_percent),
            )

        # Breakdowns are scored for the fiscal quarter regardless of cadence
        strategy_data, okr_data, kpi_data = self.engine.score_domains(
            company_id,
            AggregationInput(
                level=level,
                entity_id=entity_id,
                entity_name=entity_name,
                fiscal_year=fiscal_year,
                quarter=fiscal_quarter,
            ),
            deadline,
        )

        snapshot = PerformanceSnapshot(
            id=snapshot_id(entity_id, frequency, now),
            company_id=company_id,
            level=level,
            entity_id=entity_id,
            entity_name=entity_name,
            snapshot_date=now,
            fiscal_year=fiscal_year,
            fiscal_quarter=fiscal_quarter,
            fiscal_month=now.month,
            frequency=frequency,
            strategy_score=aggregation.strategy_score,
            okr_score=aggregation.okr_score,
            kpi_score=aggregation.kpi_score,
            combined_score=aggregation.combined_score,
            rating=aggregation.rating,
            strategy_data=strategy_data,
            okr_data=okr_data,
            kpi_data=kpi_data,
            comparison=comparison,
            created_at=as_utc(self._clock()),
            created_by=actor_id,
        )
        self.store.put_snapshot(company_id, snapshot)
        logger.info(
            "Created %s snapshot %s (combined=%.1f)",
            frequency.value,
            snapshot.id,
            snapshot.combined_score,
        )
        return snapshot

    def get_snapshot(self, company_id: str, snapshot_id: str) -> PerformanceSnapshot | None:
        return self.store.get_snapshot(company_id, snapshot_id)

    def list_snapshots(
        self, company_id: str, filters: SnapshotFilters | None = None
    ) -> list[PerformanceSnapshot]:
        if filters is not None:
            filters = dataclasses.replace(
                filters,
                start_date=as_utc(filters.start_date) if filters.start_date else None,
                end_date=as_utc(filters.end_date) if filters.end_date else None,
            )
        return self.store.list_snapshots(company_id, filters)

    def delete_snapshot(self, company_id: str, snapshot_id: str) -> None:
        self.store.delete_snapshot(company_id, snapshot_id)

    def _latest_snapshot(
        self, company_id: str, entity_id: str, frequency: SnapshotFrequency
    ) -> PerformanceSnapshot | None:
        latest = self.store.list_snapshots(
            company_id, SnapshotFilters(entity_id=entity_id, frequency=frequency, limit=1)
        )
        return latest[0] if latest else None

    # -------------------------------------------------------------------------
    # Trend analysis
    # -------------------------------------------------------------------------

    def calculate_trend(
        self,
        company_id: str,
        entity_id: str,
        entity_name: str,
        level: AggregationLevel,
        domain: PerformanceDomain,
        frequency: SnapshotFrequency,
        periods: int = TREND_PERIODS,
    ) -> PerformanceTrend:
        """
        Trend over the last `periods` snapshots of one entity and cadence.

        With fewer than MIN_DATA_POINTS_FOR_TREND snapshots the trend is
        STABLE with no data points and no projection.
        """
        if periods < 1:
            raise ValueError(f"periods must be at least 1, got {periods}")
        level = AggregationLevel(level)
        domain = PerformanceDomain(domain)
        snapshots = self.store.list_snapshots(
            company_id,
            SnapshotFilters(entity_id=entity_id, frequency=SnapshotFrequency(frequency), limit=periods),
        )

        if len(snapshots) < MIN_DATA_POINTS_FOR_TREND:
            now = as_utc(self._clock())
            return PerformanceTrend(
                entity_id=entity_id,
                entity_name=entity_name,
                level=level,
                domain=domain,
                data_points=[],
                trend=TrendIndicator.STABLE,
                trend_strength=0.0,
                volatility=0.0,
                period_start=now,
                period_end=now,
                data_point_count=0,
            )

        # Store returns newest first
        data_points = [
            TrendDataPoint(
                date=s.snapshot_date,
                score=s.score_for(domain),
                rating=get_rating_from_score(s.score_for(domain)),
                strategy_score=s.strategy_score,
                okr_score=s.okr_score,
                kpi_score=s.kpi_score,
            )
            for s in reversed(snapshots)
        ]
        scores = [p.score for p in data_points]

        slope, _, r_squared = stats.linear_regression(scores)
        first, last = scores[0], scores[-1]
        change_percent = (last - first) / first * 100 if first != 0 else 0.0
        projected = clamp_score(last + slope)

        return PerformanceTrend(
            entity_id=entity_id,
            entity_name=entity_name,
            level=level,
            domain=domain,
            data_points=data_points,
            trend=get_trend_from_change(change_percent),
            trend_strength=r_squared,
            volatility=stats.population_std(scores),
            period_start=data_points[0].date,
            period_end=data_points[-1].date,
            data_point_count=len(data_points),
            projected_score=projected,
            projected_rating=get_rating_from_score(projected),
            confidence_level=r_squared * (min(periods, len(data_points)) / periods) * 100,
        )

    # -------------------------------------------------------------------------
    # Scheduled jobs
    # -------------------------------------------------------------------------

    def create_scheduled_snapshots(
        self,
        company_id: str,
        frequency: SnapshotFrequency,
        actor_id: str,
        now: datetime | None = None,
    ) -> int:
        """
        Snapshot the group and every active subsidiary; monthly and quarterly
        runs also cover every active department. Returns the snapshot count.
        """
        frequency = SnapshotFrequency(frequency)
        now = as_utc(now or self._clock())
        directory = self.engine.directory

        targets = [(AggregationLevel.GROUP, company_id, self.engine.group_entity_name)]
        for entity in directory.list_child_entities(company_id, AggregationLevel.SUBSIDIARY):
            targets.append((AggregationLevel.SUBSIDIARY, entity["id"], entity["name"]))
        if frequency in (SnapshotFrequency.MONTHLY, SnapshotFrequency.QUARTERLY):
            for entity in directory.list_child_entities(company_id, AggregationLevel.DEPARTMENT):
                targets.append((AggregationLevel.DEPARTMENT, entity["id"], entity["name"]))

        for level, entity_id, entity_name in targets:
            self.create_snapshot(
                company_id, level, entity_id, entity_name, frequency, actor_id, now=now
            )

        logger.info(
            "Created %d scheduled %s snapshots for %s", len(targets), frequency.value, company_id
        )
        return len(targets)

    def cleanup_old_snapshots(
        self,
        company_id: str,
        retention_days: int = SNAPSHOT_RETENTION_DAYS,
        now: datetime | None = None,
    ) -> int:
        """Delete snapshots older than `retention_days`. Returns how many were removed."""
        cutoff = as_utc(now or self._clock()) - timedelta(days=retention_days)
        deleted = self.store.delete_snapshots_before(company_id, cutoff)
        logger.info("Deleted %d snapshots older than %s for %s", deleted, cutoff.date(), company_id)
        return deleted
