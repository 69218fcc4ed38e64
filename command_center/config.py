"""
Centralized configuration for the Strategy Command Center engine.

All values that vary by deployment belong here.
Override via environment variables where marked.
"""

import logging
import os
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

# ============================================================
# Storage / sources
# ============================================================

DB_PATH: Path = Path(os.environ.get("CC_DB_PATH", "data/command_center.db"))
"""SQLite file holding persisted aggregations and snapshots."""

SOURCE_PATH: str | None = os.environ.get("CC_SOURCE_PATH")
"""JSON export of plans, objectives, KPIs and the org directory (optional)."""

# ============================================================
# Engine
# ============================================================

MAX_WORKERS: int = int(os.environ.get("CC_MAX_WORKERS", "4"))
"""Upper bound on concurrently aggregated sibling entities."""

MAX_CONCURRENT_READS: int = int(os.environ.get("CC_MAX_CONCURRENT_READS", "8"))
"""Upper bound on in-flight reads against the external stores."""

DEFAULT_TIMEOUT_S: float | None = (
    float(os.environ["CC_DEFAULT_TIMEOUT_S"]) if os.environ.get("CC_DEFAULT_TIMEOUT_S") else None
)
"""Deadline applied to hierarchy walks started from the API/CLI. None = no deadline."""

GROUP_ENTITY_NAME: str = os.environ.get("CC_GROUP_ENTITY_NAME", "Dawin Group")
"""Display name of the whole-company root entity."""

# ============================================================
# Logging
# ============================================================

LOG_LEVEL: str = os.environ.get("CC_LOG_LEVEL", "INFO")

LOG_JSON: bool | None = (
    os.environ["CC_LOG_JSON"] == "1" if os.environ.get("CC_LOG_JSON") else None
)
"""Force JSON logs (1) or human logs (0). Unset = auto-detect from TTY."""

# ============================================================
# Aggregation thresholds (aggregation.yaml)
# ============================================================

AGGREGATION_CONFIG_PATH = Path(
    os.environ.get("CC_AGGREGATION_CONFIG", str(Path(__file__).parent / "aggregation.yaml"))
)


def load_aggregation_config(path: Path | None = None) -> dict:
    """Load aggregation settings from YAML, return empty dict if missing."""
    config_path = path or AGGREGATION_CONFIG_PATH
    if not config_path.exists():
        logger.warning("Aggregation config not found at %s, using defaults", config_path)
        return {}
    with open(config_path) as f:
        config = yaml.safe_load(f) or {}
    return config.get("aggregation", {})
