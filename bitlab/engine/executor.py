"""
Budget-constrained execution engine.

One engine drives one run at a time through the states::

    idle -> loading -> running <-> paused -> completed | error
    (abort from loading/running/paused) -> idle, result marked cancelled

Each requested operation is checked in a fixed order before it is applied:
abort, pause gate, step cap, enabled/policy, cost against remaining budget.
Callbacks fire synchronously from the run loop.
"""
from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional

from ..config import (
    BITS_SAMPLE_LENGTH,
    DEFAULT_INITIAL_BUDGET,
    FALLBACK_OPERATION_COUNT,
    STEP_INTERVAL_S,
)
from ..errors import (
    AbortedByUser,
    BudgetExhausted,
    InvalidTransitionError,
    OperationNotPermitted,
    ValidationError,
)
from ..utils.bits import is_bit_string, sample
from .cancel import CancellationToken
from .catalog import Catalog, SourceLibrary
from .metrics import MetricRegistry, compute_metrics
from .models import EngineState, ExecutionContext, ExecutionResult, ExecutionStep, utc_now
from .operations import OperationRegistry
from .policy import ScoringPolicyLoader
from .results import ResultHistory
from .runtimes import OperationCall, RuntimeBackend, RuntimeDispatcher

logger = logging.getLogger(__name__)

_ACTIVE_STATES = (EngineState.loading, EngineState.running, EngineState.paused)


class ExecutionEngine:
    """Runs one strategy against a bit string under a cost budget.

    Parameters
    ----------
    catalog : Catalog
        Source of the enabled operation and metric sets.
    library : SourceLibrary
        Strategy, scoring and policy sources.
    dispatcher : RuntimeDispatcher, optional
        Language backends; the default handles lua, python and cpp.
    registry : OperationRegistry, optional
        Operation implementations beyond the built-ins.
    history : ResultHistory, optional
        Every finished result is added and flushed here.
    metric_registry : MetricRegistry, optional
        Implementations for enabled metrics outside the core four.
    step_interval : float
        Seconds to yield between steps.
    on_step, on_complete, on_error, on_state_change, on_log : callable, optional
        Observers.  ``on_error`` receives ``(exception, result)``.
    """

    def __init__(
        self,
        catalog: Catalog,
        library: SourceLibrary,
        dispatcher: Optional[RuntimeDispatcher] = None,
        registry: Optional[OperationRegistry] = None,
        history: Optional[ResultHistory] = None,
        *,
        metric_registry: Optional[MetricRegistry] = None,
        step_interval: float = STEP_INTERVAL_S,
        on_step: Optional[Callable[[ExecutionStep], None]] = None,
        on_complete: Optional[Callable[[ExecutionResult], None]] = None,
        on_error: Optional[Callable[[BaseException, ExecutionResult], None]] = None,
        on_state_change: Optional[Callable[[EngineState], None]] = None,
        on_log: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._catalog = catalog
        self._library = library
        self._dispatcher = dispatcher or RuntimeDispatcher()
        self._registry = registry or OperationRegistry()
        self._metrics = metric_registry or MetricRegistry()
        self._history = history
        self._loader = ScoringPolicyLoader(library)
        self._step_interval = step_interval
        self.on_step = on_step
        self.on_complete = on_complete
        self.on_error = on_error
        self.on_state_change = on_state_change
        self.on_log = on_log

        self._state = EngineState.idle
        self._token: Optional[CancellationToken] = None
        self._resume = asyncio.Event()
        self._resume.set()
        self._single_step = False
        self.current_result: Optional[ExecutionResult] = None
        self.planned_steps = 0

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state in _ACTIVE_STATES

    # ── Pre-flight ───────────────────────────────────────────────────

    def check_requirements(
        self,
        strategy_id: str,
        bits: Optional[str],
        scoring_id: Optional[str] = None,
        policy_id: Optional[str] = None,
        initial_budget: Optional[int] = None,
    ) -> None:
        """Raise :class:`ValidationError` listing every unmet requirement."""
        errors: List[str] = []
        if not bits:
            errors.append("No binary data loaded. Generate or load data first.")
        elif not is_bit_string(bits):
            errors.append("Binary data must contain only '0' and '1'.")
        if initial_budget is not None and (
            isinstance(initial_budget, bool) or not isinstance(initial_budget, int) or initial_budget < 0
        ):
            errors.append(f"Initial budget must be a non-negative integer, got {initial_budget!r}.")
        if self._library.get_strategy(strategy_id) is None:
            errors.append(f"Strategy {strategy_id} not found.")
        if self._library.get_scoring(scoring_id) is None:
            errors.append("No scoring file uploaded. Upload a scoring script (e.g. scoring.lua) first.")
        if self._library.get_policy(policy_id) is None:
            errors.append("No policy file uploaded. Upload a policy script (e.g. policy.lua) first.")
        if not self._catalog.enabled_operations():
            errors.append("No operations enabled. Enable at least 1 operation in the catalog.")
        if not self._catalog.enabled_metrics():
            errors.append("No metrics enabled. Enable at least 1 metric in the catalog.")
        if errors:
            raise ValidationError(errors)

    # ── Run ──────────────────────────────────────────────────────────

    async def start(
        self,
        strategy_id: str,
        bits: str,
        initial_budget: Optional[int] = None,
        scoring_id: Optional[str] = None,
        policy_id: Optional[str] = None,
    ) -> ExecutionResult:
        """Run *strategy_id* over *bits* and return the finished result.

        Requirement failures raise before any state change.  Everything
        after that is reported through the result, the state and the
        callbacks rather than raised.
        """
        if self.is_active:
            raise InvalidTransitionError(f"Engine is already {self._state.value}")
        self.check_requirements(strategy_id, bits, scoring_id, policy_id, initial_budget)

        strategy = self._library.get_strategy(strategy_id)
        result = ExecutionResult(
            strategy_id=strategy.id,
            strategy_name=strategy.name,
            strategy_language=strategy.language,
            initial_bits=bits,
            final_bits=bits,
            initial_size=len(bits),
            final_size=len(bits),
        )
        self.current_result = result
        self._token = CancellationToken()
        self._resume.set()
        self._single_step = False
        self.planned_steps = 0
        t0 = time.monotonic()
        self._set_state(EngineState.loading)

        outcome = EngineState.completed
        failure: Optional[BaseException] = None
        interrupted = False
        try:
            budget = initial_budget if initial_budget is not None else DEFAULT_INITIAL_BUDGET
            context = self._loader.build_context(
                bits,
                budget,
                self._catalog.enabled_operations(),
                self._catalog.enabled_metrics(),
                scoring_id,
                policy_id,
            )
            result.initial_budget = result.final_budget = context.budget
            backend = self._dispatcher.backend_for(strategy.language)
            result.execution_mode = backend.execution_mode
            self._registry.load_catalog(self._catalog)
            self._metrics.load_catalog(self._catalog)

            await asyncio.to_thread(backend.prepare_runtime)
            self._token.raise_if_cancelled()
            observed = await asyncio.to_thread(backend.sandbox_test, strategy.source, context)
            calls = observed or backend.extract_operation_calls(strategy.source)
            if not calls:
                fallback = context.enabled_operations[:FALLBACK_OPERATION_COUNT]
                self._log(result, f"No operations requested; using enabled operations {list(fallback)}")
                calls = [OperationCall(op) for op in fallback]
            self.planned_steps = min(len(calls), context.policy_config.max_operations)
            self._token.raise_if_cancelled()

            self._set_state(EngineState.running)
            await self._run_steps(result, context, backend, calls)
            result.success = True
        except AbortedByUser as exc:
            outcome = EngineState.idle
            result.cancelled = True
            self._log(result, str(exc))
        except asyncio.CancelledError:
            outcome = EngineState.idle
            result.cancelled = True
            interrupted = True
        except Exception as exc:
            outcome = EngineState.error
            failure = exc
            result.error = str(exc)
            self._log(result, f"Error: {exc}")
            logger.error("Run %s of %s failed: %s", result.id, strategy.name, exc)

        self._finalize(result, t0)
        if self._history is not None:
            self._history.add(result)
            await self._history.flush_async()
        self._set_state(outcome)

        if interrupted:
            raise asyncio.CancelledError()
        if outcome is EngineState.completed and self.on_complete is not None:
            self.on_complete(result)
        elif outcome is EngineState.error and self.on_error is not None:
            self.on_error(failure, result)
        return result

    async def _run_steps(
        self,
        result: ExecutionResult,
        context: ExecutionContext,
        backend: RuntimeBackend,
        calls: List[OperationCall],
    ) -> None:
        bits = context.bits
        budget = context.budget
        scoring = context.scoring_config
        policy = context.policy_config

        for call in calls:
            await self._checkpoint()
            if len(result.steps) >= policy.max_operations:
                self._log(result, f"Reached max_operations ({policy.max_operations})")
                break

            op = call.operation
            try:
                self._registry.check_permitted(op, context.enabled_operations, policy)
            except OperationNotPermitted as exc:
                self._log(result, f"Skipping {exc}")
                continue

            cost = scoring.cost_of(op)
            try:
                budget = self._charge(op, cost, budget)
            except BudgetExhausted as exc:
                self._log(result, f"Budget exhausted: {exc}")
                break

            if call.has_range:
                start = max(0, min(call.range_start, len(bits)))
                end = max(start, min(call.range_end, len(bits)))
            else:
                start, end = backend.window(len(result.steps), len(bits))

            metrics_before = compute_metrics(bits, context.enabled_metrics, self._metrics)
            new_bits, implemented = self._registry.apply(op, bits, start, end, {"cost": cost})
            if not implemented:
                self._log(result, f"{op} has no implementation; bits unchanged")
            metrics_after = compute_metrics(new_bits, context.enabled_metrics, self._metrics)

            step = ExecutionStep(
                step_number=len(result.steps) + 1,
                operation=op,
                parameters={"cost": cost},
                bits_before=sample(bits, BITS_SAMPLE_LENGTH),
                bits_after=sample(new_bits, BITS_SAMPLE_LENGTH),
                metrics_before=metrics_before,
                metrics_after=metrics_after,
                cost=cost,
                budget_remaining=budget,
                size_before=len(bits),
                size_after=len(new_bits),
                range_start=start,
                range_end=end,
            )
            result.steps.append(step)
            result.bit_ranges_accessed.append((start, end))
            result.final_bits = new_bits
            result.final_budget = budget
            bits = new_bits
            self._log(result, f"Step {step.step_number}: {op} [{start}:{end}] cost={cost} budget={budget}")
            if self.on_step is not None:
                self.on_step(step)

            if self._single_step:
                self._single_step = False
                self._resume.clear()
                self._set_state(EngineState.paused)
            await asyncio.sleep(self._step_interval)
        self._token.raise_if_cancelled()

    @staticmethod
    def _charge(operation: str, cost: int, budget: int) -> int:
        if cost > budget:
            raise BudgetExhausted(operation, cost, budget)
        return budget - cost

    async def _checkpoint(self) -> None:
        """Raise if aborted; block while paused until resumed or aborted."""
        self._token.raise_if_cancelled()
        if self._resume.is_set():
            return
        resume_wait = asyncio.ensure_future(self._resume.wait())
        cancel_wait = asyncio.ensure_future(self._token.wait())
        try:
            await asyncio.wait({resume_wait, cancel_wait}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            resume_wait.cancel()
            cancel_wait.cancel()
        self._token.raise_if_cancelled()

    def _finalize(self, result: ExecutionResult, t0: float) -> None:
        result.end_time = utc_now()
        result.duration_ms = round((time.monotonic() - t0) * 1000, 3)
        result.final_size = len(result.final_bits)
        result.total_cost = result.initial_budget - result.final_budget
        if result.final_size > 0:
            result.compression_ratio = result.initial_size / result.final_size
        else:
            result.compression_ratio = 0.0

    # ── Control ──────────────────────────────────────────────────────

    def pause(self) -> bool:
        if self._state is not EngineState.running:
            return False
        self._single_step = False
        self._resume.clear()
        self._set_state(EngineState.paused)
        return True

    def resume(self) -> bool:
        if self._state is not EngineState.paused:
            return False
        self._single_step = False
        self._resume.set()
        self._set_state(EngineState.running)
        return True

    def step_once(self) -> bool:
        """From paused, let exactly one more step run, then pause again."""
        if self._state is not EngineState.paused:
            return False
        self._single_step = True
        self._resume.set()
        self._set_state(EngineState.running)
        return True

    def abort(self, reason: Optional[str] = None) -> bool:
        if not self.is_active or self._token is None:
            return False
        self._token.request_cancel(reason)
        return True

    # ── Observers ────────────────────────────────────────────────────

    def _set_state(self, state: EngineState) -> None:
        if state is self._state:
            return
        self._state = state
        if self.on_state_change is not None:
            self.on_state_change(state)

    def _log(self, result: ExecutionResult, message: str) -> None:
        stamp = datetime.now(timezone.utc).strftime("%H:%M:%S.%f")[:-3]
        result.logs.append(f"[{stamp}] {message}")
        logger.debug("%s: %s", result.id, message)
        if self.on_log is not None:
            self.on_log(message)
