# Strategy Command Center - performance engine
"""
Backend engine for the executive strategy dashboard.

Subpackages:
    aggregation    composite performance scores, hierarchy, comparison,
                   heatmaps and snapshots
    observability  structured logging and run IDs
"""
