"""
Test fixtures for deterministic testing.

This module provides:
- performance_data: pinned strategy/OKR/KPI records and org directory whose
  scores are known exactly (golden expectations)
"""

from .performance_data import (
    COMPANY_ID,
    EXPECTED_COMBINED,
    EXPECTED_KPI,
    EXPECTED_OKR,
    EXPECTED_STRATEGY,
    build_source,
    build_source_data,
    kpi_only_source,
)

__all__ = [
    "COMPANY_ID",
    "EXPECTED_STRATEGY",
    "EXPECTED_OKR",
    "EXPECTED_KPI",
    "EXPECTED_COMBINED",
    "build_source",
    "build_source_data",
    "kpi_only_source",
]
