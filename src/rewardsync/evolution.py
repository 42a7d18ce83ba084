# Copyright (c) RewardSync Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Evolution Stage Tracker.

Drives one refinement run per block through
``ANALYZING -> SYNTHESIZING -> VALIDATING -> FINALIZING -> COMPLETED``,
with ``CANCELLED`` and ``FAILED`` reachable from any non-terminal stage.

The tracker owns its timers and the in-flight evaluator call. Every
state change bumps a per-block generation counter; results carrying an
older generation are discarded, so a cancelled or retried run can never
move the task again. Reaching ``COMPLETED`` hands exactly one
``REFINEMENT_REWARD`` to the dispatcher.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Mapping, Optional

from .classifier import backoff_delay, classify, format_for_log
from .collaborators import Evaluator
from .constants import (
    DEFAULT_BACKOFF_CAP_SECONDS,
    DEFAULT_BASE_ACTIVITY_REWARD,
    DEFAULT_EVALUATOR_TIMEOUT_SECONDS,
    DEFAULT_EVOLUTION_MAX_RETRIES,
)
from .dispatcher import DistributionDispatcher
from .events import (
    EVENT_EVOLUTION_CANCELLED,
    EVENT_EVOLUTION_COMPLETED,
    EVENT_EVOLUTION_FAILED,
    EVENT_EVOLUTION_PROGRESS,
    Event,
    EventBus,
    InMemoryEventBus,
)
from .exceptions import InvalidStageTransitionError, TaskNotFoundError
from .models import (
    STAGE_ORDER,
    DistributionOutcome,
    EvolutionStage,
    EvolutionTask,
    ProgressEvent,
    RewardEvent,
    RewardType,
    reward_amount_for_grade,
)
from .observability import MetricsCollector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StageInfo:
    """Presentation and progress band of one working stage."""

    message: str
    duration_seconds: float
    progress_start: int
    progress_end: int


STAGES: dict[EvolutionStage, StageInfo] = {
    EvolutionStage.ANALYZING: StageInfo(
        "Analyzing current breakthrough formulation...", 2.0, 0, 25
    ),
    EvolutionStage.SYNTHESIZING: StageInfo(
        "Synthesizing advanced mathematical frameworks...", 8.0, 25, 50
    ),
    EvolutionStage.VALIDATING: StageInfo(
        "Validating scientific accuracy and consistency...", 3.0, 50, 75
    ),
    EvolutionStage.FINALIZING: StageInfo(
        "Finalizing evolution results and updating records...", 1.0, 75, 95
    ),
}

COMPLETED_MESSAGE = "Evolution completed successfully!"
CANCELLED_MESSAGE = "Evolution cancelled"


def estimated_remaining(stage: EvolutionStage, progress: int) -> Optional[int]:
    """Seconds left in the run, from the nominal stage durations."""
    if stage is EvolutionStage.COMPLETED:
        return 0
    info = STAGES.get(stage)
    if info is None:
        return None
    band = info.progress_end - info.progress_start
    done = min(1.0, max(0.0, (progress - info.progress_start) / band))
    remaining = info.duration_seconds * (1.0 - done)
    for later in STAGE_ORDER[STAGE_ORDER.index(stage) + 1:]:
        if later in STAGES:
            remaining += STAGES[later].duration_seconds
    return math.ceil(remaining)


@dataclass
class _RunInput:
    initial_input: Any
    source_id: Optional[str]
    reward_amount: Optional[Decimal]
    auto_complete: bool


class TaskHandle:
    """Caller's handle on a started evolution run."""

    def __init__(self, block_id: str, task_id: str, future: "asyncio.Future[EvolutionTask]") -> None:
        self.block_id = block_id
        self.task_id = task_id
        self._future = future

    def done(self) -> bool:
        return self._future.done()

    async def wait(self) -> EvolutionTask:
        """Wait for the run to reach a terminal stage and return its final state."""
        return await asyncio.shield(self._future)


ProgressObserver = Callable[[ProgressEvent], Any]


class EvolutionStageTracker:
    """Cooperative per-block state machine for evolution refinement.

    Args:
        evaluator: Scoring service called once per attempt.
        dispatcher: Receives the refinement reward on completion.
        bus: Event bus for progress and lifecycle events.
        evaluator_timeout_seconds: Bound on every evaluator call.
        max_retries: Retryable failures allowed before ``FAILED``.
        retry_base_seconds: Base of the retry delay. Defaults to the
            classified error's ``suggested_delay``.
        backoff_cap_seconds: Upper bound of any retry delay.
        base_reward_amount: Amount scaled by the grade multiplier when a
            run does not carry an explicit reward amount.
        metrics: Optional Prometheus collector.
    """

    def __init__(
        self,
        evaluator: Evaluator,
        dispatcher: DistributionDispatcher,
        *,
        bus: Optional[EventBus] = None,
        evaluator_timeout_seconds: float = DEFAULT_EVALUATOR_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_EVOLUTION_MAX_RETRIES,
        retry_base_seconds: Optional[float] = None,
        backoff_cap_seconds: float = DEFAULT_BACKOFF_CAP_SECONDS,
        base_reward_amount: Decimal = DEFAULT_BASE_ACTIVITY_REWARD,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self._evaluator = evaluator
        self._dispatcher = dispatcher
        self._bus = bus if bus is not None else InMemoryEventBus()
        self._evaluator_timeout = evaluator_timeout_seconds
        self._max_retries = max_retries
        self._retry_base = retry_base_seconds
        self._backoff_cap = backoff_cap_seconds
        self._base_reward = Decimal(base_reward_amount)
        self._metrics = metrics

        self._tasks: dict[str, EvolutionTask] = {}
        self._generations: dict[str, int] = {}
        self._inflight: dict[str, asyncio.Task[None]] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._handles: dict[str, asyncio.Future[EvolutionTask]] = {}
        self._inputs: dict[str, _RunInput] = {}
        self._observers: dict[int, Callable[[Event], Any]] = {}
        self._unsubmitted: dict[str, RewardEvent] = {}

    # -- Queries --------------------------------------------------------------

    def get_task(self, block_id: str) -> Optional[EvolutionTask]:
        return self._tasks.get(block_id)

    def is_active(self, block_id: str) -> bool:
        task = self._tasks.get(block_id)
        return task is not None and not task.stage.is_terminal

    def active_tasks(self) -> list[EvolutionTask]:
        return [t for t in self._tasks.values() if not t.stage.is_terminal]

    def unsubmitted_rewards(self) -> list[RewardEvent]:
        """Completion rewards the dispatcher has not accepted yet."""
        return list(self._unsubmitted.values())

    async def resubmit_unsubmitted(self) -> list[DistributionOutcome]:
        """Hand every held completion reward to the dispatcher again.

        Rewards whose submission fails again stay held.
        """
        outcomes: list[DistributionOutcome] = []
        for reward in list(self._unsubmitted.values()):
            try:
                outcome = await self._dispatcher.submit(reward)
            except Exception:
                logger.exception("Resubmitting reward %s failed; still held", reward.id)
                continue
            self._unsubmitted.pop(reward.id, None)
            outcomes.append(outcome)
        return outcomes

    # -- Observers ------------------------------------------------------------

    def subscribe(self, observer: ProgressObserver) -> None:
        """Deliver every ``ProgressEvent`` to *observer*."""

        def handler(event: Event) -> Any:
            return observer(ProgressEvent.model_validate(event.payload))

        self._observers[id(observer)] = handler
        self._bus.subscribe(EVENT_EVOLUTION_PROGRESS, handler)

    def unsubscribe(self, observer: ProgressObserver) -> None:
        handler = self._observers.pop(id(observer), None)
        if handler is not None:
            self._bus.unsubscribe(handler)

    # -- Lifecycle ------------------------------------------------------------

    def start(
        self,
        block_id: str,
        initial_input: Any,
        recipient: str,
        *,
        source_id: Optional[str] = None,
        reward_amount: Optional[Decimal] = None,
        auto_complete: bool = False,
    ) -> TaskHandle:
        """Start a run at ``ANALYZING`` and launch the evaluator call.

        A run already active for *block_id* is cancelled first. With
        *auto_complete* the tracker walks the remaining stages itself once
        the evaluation arrives; otherwise the caller drives them through
        :meth:`advance`.
        """
        loop = asyncio.get_running_loop()
        if self.is_active(block_id):
            logger.info("Restarting evolution for block %s", block_id)
            self.cancel(block_id)

        info = STAGES[EvolutionStage.ANALYZING]
        task = EvolutionTask(block_id=block_id, recipient=recipient, message=info.message)
        self._tasks[block_id] = task
        self._inputs[task.task_id] = _RunInput(
            initial_input,
            source_id,
            Decimal(reward_amount) if reward_amount is not None else None,
            auto_complete,
        )
        future: asyncio.Future[EvolutionTask] = loop.create_future()
        self._handles[task.task_id] = future

        generation = self._bump(block_id)
        logger.info("Evolution %s started for block %s", task.task_id, block_id)
        self._emit_progress(task)
        self._launch(block_id, generation)
        return TaskHandle(block_id, task.task_id, future)

    async def advance(self, block_id: str, next_stage: EvolutionStage) -> Optional[EvolutionTask]:
        """Move the run to the strictly next stage.

        Returns None when *block_id* has no active run.

        Raises:
            InvalidStageTransitionError: If *next_stage* is not the next
                stage, or ``COMPLETED`` is requested before an evaluation
                arrived.
        """
        task = self._tasks.get(block_id)
        if task is None or task.stage.is_terminal:
            return None

        next_stage = EvolutionStage(next_stage)
        expected = STAGE_ORDER[STAGE_ORDER.index(task.stage) + 1]
        if next_stage is not expected:
            raise InvalidStageTransitionError(
                f"Block {block_id} is {task.stage.value}; next stage is {expected.value}, "
                f"not {next_stage.value}"
            )

        if next_stage is EvolutionStage.COMPLETED:
            if task.evaluation is None:
                raise InvalidStageTransitionError(
                    f"Block {block_id} cannot complete before its evaluation arrives"
                )
            return await self._complete(task)

        info = STAGES[next_stage]
        task.stage = next_stage
        task.progress = max(task.progress, info.progress_start)
        task.message = info.message
        logger.debug("Block %s advanced to %s", block_id, next_stage.value)
        self._emit_progress(task)
        return task

    def report_progress(self, block_id: str, fraction: float, message: Optional[str] = None) -> Optional[EvolutionTask]:
        """Report intra-stage progress; clamped to the current stage's band."""
        task = self._tasks.get(block_id)
        if task is None or task.stage.is_terminal:
            return None
        info = STAGES[task.stage]
        fraction = min(1.0, max(0.0, fraction))
        value = info.progress_start + int((info.progress_end - info.progress_start) * fraction)
        task.progress = max(task.progress, min(value, info.progress_end))
        if message:
            task.message = message
        self._emit_progress(task)
        return task

    def cancel(self, block_id: str) -> EvolutionTask:
        """Cancel the active run; late results are discarded and no reward is emitted.

        Raises:
            TaskNotFoundError: If *block_id* has no run.
        """
        task = self._tasks.get(block_id)
        if task is None:
            raise TaskNotFoundError(f"No evolution task for block {block_id}")
        if task.stage.is_terminal:
            return task

        task.stage = EvolutionStage.CANCELLED
        task.message = CANCELLED_MESSAGE
        self._bump(block_id)
        logger.info("Evolution %s for block %s cancelled", task.task_id, block_id)
        self._emit_progress(task)
        self._finish(task, EVENT_EVOLUTION_CANCELLED)
        return task

    def fail(self, block_id: str, error: Any) -> EvolutionTask:
        """Report a failure of the current attempt.

        Retryable errors re-enter ``ANALYZING`` after a delay while retries
        remain; anything else ends the run in ``FAILED``.

        Raises:
            TaskNotFoundError: If *block_id* has no run.
        """
        task = self._tasks.get(block_id)
        if task is None:
            raise TaskNotFoundError(f"No evolution task for block {block_id}")
        if task.stage.is_terminal:
            return task

        classified = classify(error, task.retry_count)
        task.last_error = classified.kind.value
        generation = self._bump(block_id)
        self._cancel_pending(block_id)

        if classified.retryable and task.retry_count < self._max_retries:
            base = self._retry_base if self._retry_base is not None else classified.suggested_delay
            delay = backoff_delay(base, task.retry_count, self._backoff_cap)
            task.retry_count += 1
            task.stage = EvolutionStage.ANALYZING
            task.progress = 0
            task.evaluation = None
            task.message = f"{classified.user_message} - Retrying in {math.ceil(delay)}s..."
            logger.warning(
                "Evolution for block %s failed (attempt %d), retrying in %.1fs: %s",
                block_id,
                task.retry_count,
                delay,
                format_for_log(classified),
            )
            self._emit_progress(task, error_kind=classified.kind.value, actionable=classified.actionable)
            loop = asyncio.get_running_loop()
            self._timers[block_id] = loop.call_later(delay, self._retry, block_id, generation)
            return task

        task.stage = EvolutionStage.FAILED
        task.message = classified.user_message
        logger.error("Evolution for block %s failed: %s", block_id, format_for_log(classified))
        self._emit_progress(task, error_kind=classified.kind.value, actionable=classified.actionable)
        self._finish(
            task,
            EVENT_EVOLUTION_FAILED,
            error_kind=classified.kind.value,
            user_message=classified.user_message,
            actionable=classified.actionable,
        )
        return task

    async def wait(self, block_id: str) -> EvolutionTask:
        """Wait until the active run for *block_id* is terminal.

        Raises:
            TaskNotFoundError: If *block_id* has no run.
        """
        task = self._tasks.get(block_id)
        future = self._handles.get(task.task_id) if task is not None else None
        if future is None:
            raise TaskNotFoundError(f"No evolution task for block {block_id}")
        return await asyncio.shield(future)

    # -- Internals ------------------------------------------------------------

    def _bump(self, block_id: str) -> int:
        generation = self._generations.get(block_id, 0) + 1
        self._generations[block_id] = generation
        return generation

    def _is_current(self, block_id: str, generation: int) -> bool:
        return self._generations.get(block_id) == generation and self.is_active(block_id)

    def _launch(self, block_id: str, generation: int) -> None:
        inflight = asyncio.ensure_future(self._evaluate(block_id, generation))
        inflight.add_done_callback(self._log_evaluation_crash)
        self._inflight[block_id] = inflight

    @staticmethod
    def _log_evaluation_crash(inflight: asyncio.Future[None]) -> None:
        if not inflight.cancelled() and inflight.exception() is not None:
            logger.error("Evaluation task crashed", exc_info=inflight.exception())

    def _retry(self, block_id: str, generation: int) -> None:
        self._timers.pop(block_id, None)
        if not self._is_current(block_id, generation):
            return
        task = self._tasks[block_id]
        task.message = STAGES[EvolutionStage.ANALYZING].message
        self._emit_progress(task)
        self._launch(block_id, generation)

    def _cancel_pending(self, block_id: str) -> None:
        timer = self._timers.pop(block_id, None)
        if timer is not None:
            timer.cancel()
        inflight = self._inflight.pop(block_id, None)
        if inflight is not None and not inflight.done() and inflight is not asyncio.current_task():
            inflight.cancel()

    async def _evaluate(self, block_id: str, generation: int) -> None:
        if not self._is_current(block_id, generation):
            return
        task = self._tasks[block_id]
        run = self._inputs[task.task_id]
        try:
            evaluation = await asyncio.wait_for(
                self._evaluator.evaluate(run.initial_input),
                timeout=self._evaluator_timeout,
            )
            if not isinstance(evaluation, Mapping):
                raise ValueError(f"invalid evaluator response of type {type(evaluation).__name__}")
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if self._is_current(block_id, generation):
                self.fail(block_id, exc)
            return

        if not self._is_current(block_id, generation):
            logger.debug("Discarding stale evaluation for block %s", block_id)
            return

        self._inflight.pop(block_id, None)
        task.evaluation = dict(evaluation)
        if task.stage is EvolutionStage.ANALYZING:
            await self.advance(block_id, EvolutionStage.SYNTHESIZING)

        if run.auto_complete:
            while self._is_current(block_id, generation):
                position = STAGE_ORDER.index(task.stage)
                await self.advance(block_id, STAGE_ORDER[position + 1])

    def _build_reward(self, task: EvolutionTask) -> RewardEvent:
        run = self._inputs.get(task.task_id)
        evaluation = task.evaluation or {}
        grade = evaluation.get("grade")
        amount = (
            run.reward_amount
            if run is not None and run.reward_amount is not None
            else reward_amount_for_grade(self._base_reward, grade)
        )
        source_id = (run.source_id if run is not None else None) or f"evolution:{task.block_id}:{task.task_id}"
        return RewardEvent(
            source_id=source_id,
            reward_type=RewardType.REFINEMENT_REWARD,
            recipient=task.recipient,
            amount=amount,
            metadata={"block_id": task.block_id, "grade": grade},
        )

    async def _complete(self, task: EvolutionTask) -> EvolutionTask:
        block_id = task.block_id
        try:
            reward = self._build_reward(task)
        except Exception as exc:
            logger.exception("Could not build the refinement reward for block %s", block_id)
            return self.fail(block_id, exc)

        task.stage = EvolutionStage.COMPLETED
        task.progress = 100
        task.message = COMPLETED_MESSAGE
        task.reward_event_id = reward.id
        self._bump(block_id)
        self._emit_progress(task)

        # Held until the dispatcher has accepted it
        self._unsubmitted[reward.id] = reward
        payload: dict[str, Any] = {"reward_outcome": "UNSUBMITTED"}
        try:
            logger.info("Evolution for block %s completed; submitting reward %s", block_id, reward.id)
            outcome = await self._dispatcher.submit(reward)
            del self._unsubmitted[reward.id]
            payload = {"reward_outcome": outcome.kind.value}
        except Exception:
            logger.exception(
                "Reward %s for block %s could not be submitted; holding it for resubmission",
                reward.id,
                block_id,
            )
        finally:
            payload["reward_status"] = reward.status.value
            self._finish(task, EVENT_EVOLUTION_COMPLETED, reward_event_id=reward.id, **payload)
        return task

    def _finish(self, task: EvolutionTask, event_type: str, **extra: Any) -> None:
        block_id = task.block_id
        if self._tasks.get(block_id) is task:
            self._cancel_pending(block_id)
            del self._tasks[block_id]
        self._inputs.pop(task.task_id, None)
        future = self._handles.pop(task.task_id, None)
        if future is not None and not future.done():
            future.set_result(task.model_copy(deep=True))
        if self._metrics is not None:
            self._metrics.record_evolution(task.stage.value)

        payload = {
            "block_id": block_id,
            "task_id": task.task_id,
            "stage": task.stage.value,
            "retry_count": task.retry_count,
        }
        payload.update(extra)
        self._bus.emit(Event(event_type=event_type, source="evolution", payload=payload))

    def _emit_progress(
        self,
        task: EvolutionTask,
        error_kind: Optional[str] = None,
        actionable: Optional[str] = None,
    ) -> None:
        progress = ProgressEvent(
            block_id=task.block_id,
            stage=task.stage,
            progress=task.progress,
            message=task.message,
            estimated_remaining=estimated_remaining(task.stage, task.progress),
            retry_count=task.retry_count,
            error_kind=error_kind,
            actionable=actionable,
        )
        self._bus.emit(
            Event(
                event_type=EVENT_EVOLUTION_PROGRESS,
                source="evolution",
                payload=progress.model_dump(mode="json"),
            )
        )
