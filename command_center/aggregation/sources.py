"""
Read contracts for the external stores the engine consumes.

The engine never writes to these. Records are plain dicts shaped like the
documents in the strategy, OKR and KPI collections:

    plan:      {id, fiscal_year, scope, subsidiary_id?, department_id?, status,
                pillars: [{id, name, progress, objectives: [{status,
                initiatives: [{status}]}]}]}
    objective: {id, fiscal_year, quarter?, level, owner_id, department_id?,
                status, score, parent_objective_id?, key_results: [{score}]}
    kpi:       {id, status, scope, subsidiary_id?, department_id?, owner_id?,
                category, direction, target: {value}, current_value?,
                current_performance?, trend_direction?}
    entity:    {id, name, level, parent_id?, is_active}

InMemorySource implements all four contracts over a dict (or a JSON export)
and backs the CLI, the API default wiring and the tests.
"""

import json
import logging
from pathlib import Path
from typing import Protocol

from .constants import AggregationLevel

logger = logging.getLogger(__name__)


class StrategyRepository(Protocol):
    def list_plans(self, company_id: str, fiscal_year: int) -> list[dict]: ...


class OKRRepository(Protocol):
    def list_objectives(
        self, company_id: str, fiscal_year: int, quarter: int | None = None
    ) -> list[dict]: ...


class KPIRepository(Protocol):
    def list_active_kpis(self, company_id: str) -> list[dict]: ...


class OrgDirectory(Protocol):
    def list_child_entities(
        self,
        company_id: str,
        level: AggregationLevel,
        parent_entity_id: str | None = None,
    ) -> list[dict]:
        """Active entities at `level`, optionally restricted to one parent. [{id, name}]"""
        ...

    def get_entity_name(self, company_id: str, entity_id: str) -> str | None: ...


class InMemorySource:
    """
    Dict-backed implementation of every read contract.

    Layout: {company_id: {"plans": [...], "objectives": [...],
                          "kpis": [...], "entities": [...]}}
    """

    def __init__(self, data: dict | None = None):
        self._data: dict[str, dict] = data or {}

    @classmethod
    def from_json(cls, path: str | Path) -> "InMemorySource":
        with open(path) as f:
            data = json.load(f)
        logger.info("Loaded source export from %s (%d companies)", path, len(data))
        return cls(data)

    def _collection(self, company_id: str, name: str) -> list[dict]:
        return self._data.get(company_id, {}).get(name, [])

    def add(self, company_id: str, collection: str, record: dict) -> None:
        self._data.setdefault(company_id, {}).setdefault(collection, []).append(record)

    # -- StrategyRepository ---------------------------------------------------

    def list_plans(self, company_id: str, fiscal_year: int) -> list[dict]:
        return [p for p in self._collection(company_id, "plans") if p.get("fiscal_year") == fiscal_year]

    # -- OKRRepository --------------------------------------------------------

    def list_objectives(
        self, company_id: str, fiscal_year: int, quarter: int | None = None
    ) -> list[dict]:
        objectives = [
            o for o in self._collection(company_id, "objectives") if o.get("fiscal_year") == fiscal_year
        ]
        if quarter:
            objectives = [o for o in objectives if o.get("quarter") == quarter]
        return objectives

    # -- KPIRepository --------------------------------------------------------

    def list_active_kpis(self, company_id: str) -> list[dict]:
        return [k for k in self._collection(company_id, "kpis") if k.get("status") == "active"]

    # -- OrgDirectory ---------------------------------------------------------

    def list_child_entities(
        self,
        company_id: str,
        level: AggregationLevel,
        parent_entity_id: str | None = None,
    ) -> list[dict]:
        level = AggregationLevel(level)
        children = []
        for entity in self._collection(company_id, "entities"):
            if entity.get("level") != level.value or not entity.get("is_active", True):
                continue
            if parent_entity_id is not None and entity.get("parent_id") != parent_entity_id:
                continue
            children.append({"id": entity["id"], "name": entity.get("name", entity["id"])})
        return children

    def get_entity_name(self, company_id: str, entity_id: str) -> str | None:
        for entity in self._collection(company_id, "entities"):
            if entity["id"] == entity_id:
                return entity.get("name")
        return None
