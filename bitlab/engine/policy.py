"""
Scoring and policy source parsing.

Two source shapes are accepted.  Lua-style assignments::

    initial_budget = 100
    costs = { XOR = 2, NOT = 1 }
    max_operations = 50
    allowed_operations = {"XOR", "NOT"}
    forbidden = {"SHL"}

or a YAML/JSON mapping with the same keys.  A missing or unparseable
source never fails a run: it falls back to the default cost table and
step cap.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, FrozenSet, Iterable, Optional

import yaml

from ..config import DEFAULT_MAX_OPERATIONS, DEFAULT_OPERATION_COST
from .catalog import SourceLibrary
from .models import ExecutionContext, PolicyConfig, ScoringConfig

logger = logging.getLogger(__name__)

_INITIAL_BUDGET_RE = re.compile(r"initial_budget\s*=\s*(-?\d+)")
_COSTS_BLOCK_RE = re.compile(r"costs\s*=\s*\{([^}]+)\}")
_COST_ENTRY_RE = re.compile(r"(\w+)\s*=\s*(\d+)")
_MAX_OPERATIONS_RE = re.compile(r"max_operations\s*=\s*(\d+)")
_ALLOWED_RE = re.compile(r"allowed_operations\s*=\s*\{([^}]*)\}")
_FORBIDDEN_RE = re.compile(r"forbidden(?:_operations)?\s*=\s*\{([^}]*)\}")
_QUOTED_RE = re.compile(r"[\"']([^\"']+)[\"']")

_SCORING_KEYS = {"initial_budget", "costs"}
_POLICY_KEYS = {"max_operations", "allowed_operations", "forbidden", "forbidden_operations"}


def _as_mapping(source: str, keys: set) -> Optional[Dict[str, Any]]:
    """Parse *source* as YAML; return it only if it is a mapping using *keys*."""
    try:
        data = yaml.safe_load(source)
    except yaml.YAMLError:
        return None
    if isinstance(data, dict) and keys & set(data):
        return data
    return None


def _names(values: Iterable[Any]) -> FrozenSet[str]:
    return frozenset(str(v).strip() for v in values if str(v).strip())


def _budget_or_none(raw: Any) -> Optional[int]:
    """A declared budget, or ``None`` when it is not a non-negative integer."""
    if isinstance(raw, bool) or (isinstance(raw, float) and not raw.is_integer()):
        logger.warning("Ignoring initial_budget %r: not an integer", raw)
        return None
    try:
        budget = int(raw)
    except (TypeError, ValueError):
        logger.warning("Ignoring initial_budget %r: not an integer", raw)
        return None
    if budget < 0:
        logger.warning("Ignoring negative initial_budget %d", budget)
        return None
    return budget


def parse_scoring(source: str, default_cost: int = DEFAULT_OPERATION_COST) -> ScoringConfig:
    """Parse a scoring source into a :class:`ScoringConfig`."""
    mapping = _as_mapping(source, _SCORING_KEYS)
    costs: Dict[str, int] = {}
    initial_budget: Optional[int] = None

    if mapping is not None:
        for op, raw in (mapping.get("costs") or {}).items():
            try:
                cost = int(raw)
            except (TypeError, ValueError):
                logger.warning("Ignoring cost %r for %s: not an integer", raw, op)
                continue
            if cost < 0:
                logger.warning("Ignoring negative cost %d for %s", cost, op)
                continue
            costs[str(op)] = cost
        if mapping.get("initial_budget") is not None:
            initial_budget = _budget_or_none(mapping["initial_budget"])
    else:
        block = _COSTS_BLOCK_RE.search(source)
        if block:
            costs = {op: int(cost) for op, cost in _COST_ENTRY_RE.findall(block.group(1))}
        budget = _INITIAL_BUDGET_RE.search(source)
        if budget:
            initial_budget = _budget_or_none(budget.group(1))

    return ScoringConfig(costs=costs, initial_budget=initial_budget, default_cost=default_cost)


def parse_policy(source: str, default_max_operations: int = DEFAULT_MAX_OPERATIONS) -> PolicyConfig:
    """Parse a policy source into a :class:`PolicyConfig`."""
    mapping = _as_mapping(source, _POLICY_KEYS)
    allowed: Optional[FrozenSet[str]] = None
    forbidden: FrozenSet[str] = frozenset()
    max_operations = default_max_operations

    if mapping is not None:
        if mapping.get("allowed_operations") is not None:
            allowed = _names(mapping["allowed_operations"])
        forbidden = _names(mapping.get("forbidden") or mapping.get("forbidden_operations") or [])
        if mapping.get("max_operations") is not None:
            max_operations = int(mapping["max_operations"])
    else:
        match = _ALLOWED_RE.search(source)
        if match:
            allowed = _names(_QUOTED_RE.findall(match.group(1)))
        match = _FORBIDDEN_RE.search(source)
        if match:
            forbidden = _names(_QUOTED_RE.findall(match.group(1)))
        match = _MAX_OPERATIONS_RE.search(source)
        if match:
            max_operations = int(match.group(1))

    return PolicyConfig(allowed=allowed, forbidden=forbidden, max_operations=max(0, max_operations))


class ScoringPolicyLoader:
    """Resolves scoring and policy sources from the library into configs."""

    def __init__(
        self,
        library: SourceLibrary,
        default_cost: int = DEFAULT_OPERATION_COST,
        default_max_operations: int = DEFAULT_MAX_OPERATIONS,
    ) -> None:
        self._library = library
        self._default_cost = default_cost
        self._default_max_operations = default_max_operations

    def load_scoring(self, scoring_id: Optional[str] = None) -> ScoringConfig:
        entry = self._library.get_scoring(scoring_id)
        if entry is None:
            logger.info("No scoring source available; using default costs")
            return ScoringConfig(default_cost=self._default_cost)
        try:
            return parse_scoring(entry.source, self._default_cost)
        except (ValueError, TypeError, AttributeError) as exc:
            logger.warning("Scoring source %s unparseable (%s); using defaults", entry.name, exc)
            return ScoringConfig(default_cost=self._default_cost)

    def load_policy(self, policy_id: Optional[str] = None) -> PolicyConfig:
        entry = self._library.get_policy(policy_id)
        if entry is None:
            logger.info("No policy source available; using default policy")
            return PolicyConfig(max_operations=self._default_max_operations)
        try:
            return parse_policy(entry.source, self._default_max_operations)
        except (ValueError, TypeError, AttributeError) as exc:
            logger.warning("Policy source %s unparseable (%s); using defaults", entry.name, exc)
            return PolicyConfig(max_operations=self._default_max_operations)

    def build_context(
        self,
        bits: str,
        initial_budget: int,
        enabled_operations: Iterable[str],
        enabled_metrics: Iterable[str],
        scoring_id: Optional[str] = None,
        policy_id: Optional[str] = None,
    ) -> ExecutionContext:
        """Build the immutable context for one run.

        A budget declared by the scoring source replaces *initial_budget*.
        """
        scoring = self.load_scoring(scoring_id)
        policy = self.load_policy(policy_id)
        budget = scoring.initial_budget if scoring.initial_budget is not None else initial_budget
        return ExecutionContext(
            bits=bits,
            budget=budget,
            initial_budget=budget,
            enabled_metrics=tuple(enabled_metrics),
            enabled_operations=tuple(enabled_operations),
            scoring_config=scoring,
            policy_config=policy,
        )
