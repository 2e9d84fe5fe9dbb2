"""Per-run state machine with exclusive background execution."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field

from compliance_agent.agent.base import AgentServices, StageDependencies
from compliance_agent.agent.pipeline import (
    PipelineExecutor,
    RunContext,
    StageBuilder,
    default_stages,
)
from compliance_agent.errors import RunNotFoundError
from compliance_agent.obs.logging import set_run_context
from compliance_agent.obs.metrics import MetricsRecorder
from compliance_agent.schemas import (
    QuestionPayload,
    ReasoningStep,
    RunMetrics,
    RunRecord,
    utc_now,
)
from compliance_agent.storage.kv import KeyValueStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _RunSlot:
    """Arena entry for one run id while it is being created or executed."""

    init_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    execution_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    task: asyncio.Task[None] | None = None


class RunCoordinator:
    """Owns run records and drives each run from pending to a terminal status.

    Every in-flight run id gets its own slot with two locks: `init_lock`
    serializes record creation so `init` is idempotent under concurrent calls,
    and `execution_lock` guarantees that at most one pipeline executes per run.
    A slot is released once its execution task finishes; the stored record is
    the source of truth afterwards. Runs with different ids share nothing but
    the store.

    Each state change is written to the store before the coordinator moves on,
    so `status` always returns the last durable snapshot. Any failure during
    execution, including a failed store write, ends the run as `failed`.
    """

    def __init__(
        self,
        store: KeyValueStore,
        services: AgentServices,
        *,
        stage_builder: StageBuilder = default_stages,
    ) -> None:
        self._store = store
        self._services = services
        self._stage_builder = stage_builder
        self._slots: dict[str, _RunSlot] = {}

    @property
    def strategy(self) -> str:
        return self._services.retriever.strategy

    async def submit(self, payload: QuestionPayload) -> RunRecord:
        """Create a run with a fresh identifier."""
        return await self.init(uuid.uuid4().hex, payload)

    async def init(self, run_id: str, payload: QuestionPayload) -> RunRecord:
        """Write a pending record and schedule execution; no-op for known ids."""
        slot = self._slot(run_id)
        async with slot.init_lock:
            existing = await self._load(run_id)
            if existing is not None:
                if slot.task is None:
                    self._discard(run_id, slot)
                return existing

            record = _record_from(run_id, payload)
            await self._save(record)
            logger.info("Run %s created", run_id)

            task = asyncio.create_task(self._execute(slot, run_id, payload), name=f"run-{run_id}")
            slot.task = task
            task.add_done_callback(lambda done: self._release(run_id, slot, done))
            return record

    async def status(self, run_id: str) -> RunRecord:
        record = await self._load(run_id)
        if record is None:
            raise RunNotFoundError(run_id)
        return record

    async def wait(self, run_id: str) -> RunRecord:
        """Wait for a scheduled execution to finish and return the record."""
        slot = self._slots.get(run_id)
        if slot is not None and slot.task is not None:
            await asyncio.shield(slot.task)
        return await self.status(run_id)

    async def shutdown(self) -> None:
        tasks = [slot.task for slot in self._slots.values() if slot.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _execute(self, slot: _RunSlot, run_id: str, payload: QuestionPayload) -> None:
        if slot.execution_lock.locked():
            logger.warning("Run %s is already executing; duplicate trigger ignored", run_id)
            return

        async with slot.execution_lock:
            set_run_context(run_id)
            try:
                await self._execute_locked(run_id, payload)
            finally:
                set_run_context(None)

    async def _execute_locked(self, run_id: str, payload: QuestionPayload) -> None:
        start = time.perf_counter()
        recorder = MetricsRecorder()
        record: RunRecord | None = None

        async def checkpoint(step: ReasoningStep) -> None:
            record.reasoning.append(step)
            record.updated_at = utc_now()
            record.metrics = RunMetrics(tool_calls=recorder.metrics)
            await self._save(record)

        try:
            record = await self._load(run_id)
            if record is None or record.status != "pending":
                logger.warning("Run %s is not pending; execution skipped", run_id)
                return

            record.status = "running"
            record.started_at = utc_now()
            record.updated_at = record.started_at
            await self._save(record)
            logger.info("Run %s running", run_id)

            executor = PipelineExecutor(
                StageDependencies(services=self._services, recorder=recorder),
                self._stage_builder,
            )
            result = await executor.execute(
                payload, RunContext(run_id=run_id, on_step=checkpoint)
            )

            record.status = "completed"
            record.answer = result.answer
            record.reasoning = result.reasoning
            record.completed_at = utc_now()
            record.updated_at = record.completed_at
            record.metrics = RunMetrics(
                total_latency_ms=_elapsed_ms(start), tool_calls=result.metrics
            )
            await self._save(record)
        except Exception as exc:
            logger.exception("Run %s failed", run_id)
            if record is None:
                record = _record_from(run_id, payload)
            await self._mark_failed(record, exc, start, recorder)
            return

        logger.info(
            "Run %s completed with %d obligations in %.1fms",
            run_id,
            len(result.answer.obligations),
            record.metrics.total_latency_ms,
        )

    async def _mark_failed(
        self, record: RunRecord, exc: Exception, start: float, recorder: MetricsRecorder
    ) -> None:
        record.status = "failed"
        record.answer = None
        record.error = str(exc) or exc.__class__.__name__
        record.completed_at = utc_now()
        record.updated_at = record.completed_at
        record.metrics = RunMetrics(
            total_latency_ms=_elapsed_ms(start), tool_calls=recorder.metrics
        )
        try:
            await self._save(record)
        except Exception:
            logger.exception("Run %s could not be marked failed", record.id)

    def _release(self, run_id: str, slot: _RunSlot, task: asyncio.Task[None]) -> None:
        self._discard(run_id, slot)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Run %s execution task crashed", run_id, exc_info=task.exception())

    def _discard(self, run_id: str, slot: _RunSlot) -> None:
        if self._slots.get(run_id) is slot:
            del self._slots[run_id]

    def _slot(self, run_id: str) -> _RunSlot:
        slot = self._slots.get(run_id)
        if slot is None:
            slot = _RunSlot()
            self._slots[run_id] = slot
        return slot

    async def _load(self, run_id: str) -> RunRecord | None:
        raw = await self._store.get(_run_key(run_id))
        if raw is None:
            return None
        return RunRecord.model_validate(raw)

    async def _save(self, record: RunRecord) -> None:
        await self._store.put(_run_key(record.id), record.to_json_dict())


def _record_from(run_id: str, payload: QuestionPayload) -> RunRecord:
    now = utc_now()
    return RunRecord(
        id=run_id,
        question=payload.question,
        targets=payload.targets,
        metadata=payload.metadata,
        created_at=now,
        updated_at=now,
    )


def _run_key(run_id: str) -> str:
    return f"run:{run_id}"


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000.0
