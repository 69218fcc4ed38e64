"""
Run context: which run, company and operation a log line belongs to.

A run is one API request or one CLI command. The engine fans work out to
thread pools; it copies the context into every submitted task, so worker
logs carry the same fields as the caller.
"""

import contextvars
import uuid
from typing import Optional

_run_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "run_id", default=None
)
_company_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "company_id", default=None
)
_operation_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "operation", default=None
)


def get_run_id() -> Optional[str]:
    """Get the current run ID from context."""
    return _run_id_var.get()


def set_run_id(run_id: str) -> contextvars.Token:
    """Set the run ID in context. Returns token for reset."""
    return _run_id_var.set(run_id)


def get_company_id() -> Optional[str]:
    return _company_id_var.get()


def get_operation() -> Optional[str]:
    return _operation_var.get()


def generate_run_id() -> str:
    """Generate a new run ID."""
    return f"run-{uuid.uuid4().hex[:16]}"


def run_fields() -> dict[str, str]:
    """The context fields that are set, keyed as they appear in JSON logs."""
    fields = {
        "run_id": _run_id_var.get(),
        "company_id": _company_id_var.get(),
        "operation": _operation_var.get(),
    }
    return {key: value for key, value in fields.items() if value}


class RunContext:
    """
    Context manager for run-scoped operations.

    Usage:
        with RunContext(company_id="acme", operation="hierarchy") as ctx:
            logger.info("Building tree")  # carries run_id, company_id, operation

        # Narrow an existing run to one operation; the run ID is inherited:
        with RunContext(operation="create_snapshot"):
            ...

    Fields left as None keep the enclosing context's value. A run ID is
    generated only when no enclosing run has one.
    """

    def __init__(
        self,
        run_id: Optional[str] = None,
        company_id: Optional[str] = None,
        operation: Optional[str] = None,
    ):
        self.run_id = run_id or get_run_id() or generate_run_id()
        self.company_id = company_id or get_company_id()
        self.operation = operation or get_operation()
        self._tokens: list[tuple[contextvars.ContextVar, contextvars.Token]] = []

    def __enter__(self) -> "RunContext":
        for var, value in (
            (_run_id_var, self.run_id),
            (_company_id_var, self.company_id),
            (_operation_var, self.operation),
        ):
            self._tokens.append((var, var.set(value)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)
