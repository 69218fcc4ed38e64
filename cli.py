#!/usr/bin/env python3
"""
Strategy Command Center CLI

Command-line access to the performance aggregation engine over a JSON
source export. Results print as JSON.

Usage:
    python cli.py aggregate acme --level subsidiary --entity sub-1 --name Finishes --fy 2025
    python cli.py hierarchy acme --fy 2025 [--quarter 2]
    python cli.py compare acme sub-1 sub-2 sub-3 --domain okr --fy 2025
    python cli.py heatmap acme sub-1 sub-2 --fy 2025
    python cli.py snapshot acme --frequency monthly --scheduled
    python cli.py trend acme sub-1 --frequency monthly
    python cli.py cleanup acme --retention-days 365

Source and database default to CC_SOURCE_PATH and CC_DB_PATH.
"""

import argparse
import json
import sys

from command_center import config
from command_center.aggregation import (
    AggregationEngine,
    AggregationError,
    AggregationInput,
    AggregationLevel,
    Deadline,
    InMemorySource,
    PerformanceDomain,
    SnapshotFrequency,
    SnapshotService,
    SQLiteStore,
)
from command_center.aggregation.constants import SNAPSHOT_RETENTION_DAYS
from command_center.observability import RunContext, configure_logging


def _services(args):
    source = InMemorySource.from_json(args.source) if args.source else InMemorySource()
    store = SQLiteStore(args.db)
    engine = AggregationEngine.from_source(source, store)
    return engine, SnapshotService(engine, store)


def _print(data):
    print(json.dumps(data, indent=2, default=str))


def cmd_aggregate(args):
    """Aggregate one entity."""
    engine, _ = _services(args)
    result = engine.aggregate(
        args.company,
        AggregationInput(
            level=args.level,
            entity_id=args.entity,
            entity_name=args.name or args.entity,
            fiscal_year=args.fy,
            quarter=args.quarter,
            month=args.month,
            include_children=args.include_children,
        ),
        args.actor,
        Deadline.after(args.timeout),
    )
    if args.save:
        engine.save_aggregation(args.company, result)
    _print(result.to_dict())
    return 0


def cmd_hierarchy(args):
    """Org-wide performance tree."""
    engine, _ = _services(args)
    tree = engine.build_hierarchy(args.company, args.fy, args.quarter, Deadline.after(args.timeout))
    _print(tree.to_dict())
    return 0


def cmd_compare(args):
    """Rank entities on one domain."""
    engine, _ = _services(args)
    comparison = engine.compare(
        args.company,
        args.entities,
        args.domain,
        args.fy,
        args.quarter,
        level=args.level,
        deadline=Deadline.after(args.timeout),
    )
    _print(comparison.to_dict())
    return 0


def cmd_heatmap(args):
    """Entities x domains grid."""
    engine, _ = _services(args)
    grid = engine.heatmap(
        args.company,
        args.entities,
        args.domains,
        args.fy,
        args.quarter,
        level=args.level,
        deadline=Deadline.after(args.timeout),
    )
    _print(grid.to_dict())
    return 0


def cmd_snapshot(args):
    """Take one snapshot or the scheduled batch."""
    _, snapshots = _services(args)
    if args.scheduled:
        count = snapshots.create_scheduled_snapshots(args.company, args.frequency, args.actor)
        _print({"created": count})
        return 0

    if not args.entity:
        print("❌ --entity is required unless --scheduled", file=sys.stderr)
        return 1
    snapshot = snapshots.create_snapshot(
        args.company,
        args.level,
        args.entity,
        args.name or args.entity,
        args.frequency,
        args.actor,
    )
    _print(snapshot.to_dict())
    return 0


def cmd_trend(args):
    """Trend over recent snapshots."""
    _, snapshots = _services(args)
    trend = snapshots.calculate_trend(
        args.company,
        args.entity,
        args.name or args.entity,
        args.level,
        args.domain,
        args.frequency,
        args.periods,
    )
    _print(trend.to_dict())
    return 0


def cmd_cleanup(args):
    """Delete snapshots past retention."""
    _, snapshots = _services(args)
    deleted = snapshots.cleanup_old_snapshots(args.company, args.retention_days)
    _print({"deleted": deleted})
    return 0


def build_parser():
    parser = argparse.ArgumentParser(description="Strategy Command Center CLI")
    parser.add_argument('--source', default=config.SOURCE_PATH, help='JSON source export')
    parser.add_argument('--db', default=str(config.DB_PATH), help='SQLite database path')
    parser.add_argument('--timeout', type=float, default=config.DEFAULT_TIMEOUT_S,
                        help='Deadline in seconds')
    parser.add_argument('--actor', default='cli', help='Recorded as calculated_by/created_by')
    parser.add_argument('--log-level', default=config.LOG_LEVEL)
    subparsers = parser.add_subparsers(dest='command', required=True)

    levels = [level.value for level in AggregationLevel]
    domains = [domain.value for domain in PerformanceDomain]
    frequencies = [frequency.value for frequency in SnapshotFrequency]

    # aggregate
    p = subparsers.add_parser('aggregate', help='Aggregate one entity')
    p.add_argument('company', help='Company ID')
    p.add_argument('--level', choices=levels, required=True)
    p.add_argument('--entity', required=True, help='Entity ID')
    p.add_argument('--name', help='Entity display name')
    p.add_argument('--fy', type=int, required=True, help='Fiscal year')
    period = p.add_mutually_exclusive_group()
    period.add_argument('--quarter', type=int, choices=[1, 2, 3, 4])
    period.add_argument('--month', type=int, choices=range(1, 13))
    p.add_argument('--include-children', action='store_true')
    p.add_argument('--save', action='store_true', help='Persist the result')

    # hierarchy
    p = subparsers.add_parser('hierarchy', help='Org performance tree')
    p.add_argument('company', help='Company ID')
    p.add_argument('--fy', type=int, required=True)
    p.add_argument('--quarter', type=int, choices=[1, 2, 3, 4])

    # compare
    p = subparsers.add_parser('compare', help='Rank entities')
    p.add_argument('company', help='Company ID')
    p.add_argument('entities', nargs='+', help='Entity IDs (two or more)')
    p.add_argument('--domain', choices=domains, default='combined')
    p.add_argument('--level', choices=levels, default='subsidiary')
    p.add_argument('--fy', type=int, required=True)
    p.add_argument('--quarter', type=int, choices=[1, 2, 3, 4])

    # heatmap
    p = subparsers.add_parser('heatmap', help='Entities x domains grid')
    p.add_argument('company', help='Company ID')
    p.add_argument('entities', nargs='+', help='Entity IDs')
    p.add_argument('--domains', nargs='+', choices=domains, default=domains)
    p.add_argument('--level', choices=levels, default='subsidiary')
    p.add_argument('--fy', type=int, required=True)
    p.add_argument('--quarter', type=int, choices=[1, 2, 3, 4])

    # snapshot
    p = subparsers.add_parser('snapshot', help='Take performance snapshots')
    p.add_argument('company', help='Company ID')
    p.add_argument('--frequency', choices=frequencies, required=True)
    p.add_argument('--level', choices=levels, default='group')
    p.add_argument('--entity', help='Entity ID')
    p.add_argument('--name', help='Entity display name')
    p.add_argument('--scheduled', action='store_true',
                   help='Group, subsidiaries and (monthly/quarterly) departments')

    # trend
    p = subparsers.add_parser('trend', help='Snapshot trend for one entity')
    p.add_argument('company', help='Company ID')
    p.add_argument('entity', help='Entity ID')
    p.add_argument('--name', help='Entity display name')
    p.add_argument('--level', choices=levels, default='subsidiary')
    p.add_argument('--domain', choices=domains, default='combined')
    p.add_argument('--frequency', choices=frequencies, default='monthly')
    p.add_argument('--periods', type=int, default=12)

    # cleanup
    p = subparsers.add_parser('cleanup', help='Delete old snapshots')
    p.add_argument('company', help='Company ID')
    p.add_argument('--retention-days', type=int, default=SNAPSHOT_RETENTION_DAYS)

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, json_format=config.LOG_JSON)

    # Dispatch
    commands = {
        'aggregate': cmd_aggregate,
        'hierarchy': cmd_hierarchy,
        'compare': cmd_compare,
        'heatmap': cmd_heatmap,
        'snapshot': cmd_snapshot,
        'trend': cmd_trend,
        'cleanup': cmd_cleanup,
    }

    with RunContext(company_id=args.company, operation=args.command):
        try:
            return commands[args.command](args)
        except (AggregationError, ValueError) as e:
            print(f"❌ {e}", file=sys.stderr)
            return 1


if __name__ == '__main__':
    sys.exit(main())
