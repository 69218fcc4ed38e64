"""
Observability: structured logging and run context (run ID, company, operation).

Usage:
    from command_center.observability import get_logger, RunContext

    logger = get_logger(__name__)

    with RunContext(company_id="acme", operation="hierarchy"):
        logger.info("Hierarchy build started")
"""

from .context import (
    RunContext,
    generate_run_id,
    get_company_id,
    get_operation,
    get_run_id,
    run_fields,
    set_run_id,
)
from .logging import HumanFormatter, JSONFormatter, configure_logging, get_logger

__all__ = [
    # Logging
    "get_logger",
    "configure_logging",
    "JSONFormatter",
    "HumanFormatter",
    # Context
    "RunContext",
    "generate_run_id",
    "get_run_id",
    "set_run_id",
    "get_company_id",
    "get_operation",
    "run_fields",
]
