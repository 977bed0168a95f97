"""
Concept synthesis orchestrator.

State machine per run:

    IDLE → PRIMARY_PENDING → LIVE{pending} → SETTLED
                      └────→ FAILED

The primary concept call blocks; once it resolves the record and its theme
are published, then illustration / leads / mood board are dispatched as
independent tasks. Each completion is merged into a fresh record and
republished. Starting a new run supersedes the old one: its late results are
dropped by run-id comparison, its tasks are left to finish on their own.

All merges happen on the event loop with no await between reading the live
record and publishing the next one, so no locking is needed.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Sequence, Set

from .errors import PrimaryGenerationError, ValidationError
from .models import NEON_THEME, ConceptRecord, Enrichment, Theme
from .publisher import Channel
from .staging import EncodedPayload

logger = logging.getLogger(__name__)

MAX_DIRECTED_EXTRAS = 2

# value merged when an enrichment task dies unexpectedly
_EMPTY_RESULT = {
    Enrichment.ILLUSTRATION: None,
    Enrichment.LEADS: [],
    Enrichment.MOOD_BOARD: [],
}


class RunState(str, Enum):
    IDLE = "idle"
    PRIMARY_PENDING = "primary_pending"
    LIVE = "live"
    SETTLED = "settled"
    FAILED = "failed"


@dataclass(frozen=True)
class RunFailure:
    run_id: int
    message: str


@dataclass(frozen=True)
class EnrichmentCompletion:
    run_id: int
    kind: Enrichment
    value: Any


@dataclass(frozen=True)
class RunSnapshot:
    run_id: int
    state: RunState
    record: Optional[ConceptRecord]
    theme: Theme
    pending: FrozenSet[Enrichment] = field(default_factory=frozenset)
    error: Optional[RunFailure] = None


def _require_payload(label: str, payload: Optional[EncodedPayload]) -> EncodedPayload:
    if payload is None or not payload.data:
        raise ValidationError(f"Missing {label} image — all three references are required")
    return payload


class ConceptOrchestrator:
    """
    Drives one synthesis run at a time and publishes snapshots on three channels:

      records — Optional[ConceptRecord], None while no record is live
      themes  — the active Theme (default theme until a concept lands)
      errors  — Optional[RunFailure], terminal primary failure of the active run
    """

    def __init__(self, gateway, default_theme: Theme = NEON_THEME) -> None:
        self.gateway = gateway
        self.default_theme = default_theme

        self.records: Channel[Optional[ConceptRecord]] = Channel("records", None)
        self.themes: Channel[Theme] = Channel("themes", default_theme)
        self.errors: Channel[Optional[RunFailure]] = Channel("errors", None)

        self.state = RunState.IDLE
        self._run_id = 0
        self._record: Optional[ConceptRecord] = None
        self._pending: Set[Enrichment] = set()
        self._tasks: Dict[int, Set[asyncio.Task]] = {}

    # ── Introspection ─────────────────────────────────────────────────────────

    @property
    def run_id(self) -> int:
        return self._run_id

    @property
    def pending(self) -> FrozenSet[Enrichment]:
        return frozenset(self._pending)

    def snapshot(self) -> RunSnapshot:
        return RunSnapshot(
            run_id=self._run_id,
            state=self.state,
            record=self._record,
            theme=self.themes.value,
            pending=frozenset(self._pending),
            error=self.errors.value,
        )

    # ── Run lifecycle ─────────────────────────────────────────────────────────

    def start_run(
        self,
        texture: Optional[EncodedPayload],
        silhouette: Optional[EncodedPayload],
        color: Optional[EncodedPayload],
    ) -> asyncio.Task:
        """
        Accept a run request and schedule its primary call.

        Must be called from inside a running event loop. Supersedes any
        current run.

        Raises:
            ValidationError: a payload is missing (state is left untouched)
        """
        payloads = (
            _require_payload("texture", texture),
            _require_payload("silhouette", silhouette),
            _require_payload("color", color),
        )

        self._run_id += 1
        run_id = self._run_id
        if self.state is not RunState.IDLE:
            logger.info(f"Run {run_id} supersedes run {run_id - 1} ({self.state.value})")

        self.state = RunState.PRIMARY_PENDING
        self._pending = set()
        if self._record is not None:
            self._record = None
            self.records.publish(None)
        if self.errors.value is not None:
            self.errors.publish(None)
        if self.themes.value != self.default_theme:
            self.themes.publish(self.default_theme)

        return self._spawn(run_id, self._run_primary(run_id, *payloads))

    async def run(
        self,
        texture: Optional[EncodedPayload],
        silhouette: Optional[EncodedPayload],
        color: Optional[EncodedPayload],
    ) -> Optional[ConceptRecord]:
        """Start a run and wait for its primary step. None if it failed or was superseded."""
        return await self.start_run(texture, silhouette, color)

    async def wait_settled(self) -> Optional[ConceptRecord]:
        """Wait for every outstanding task of the active run, then return its record."""
        run_id = self._run_id
        while True:
            tasks = [t for t in self._tasks.get(run_id, ()) if not t.done()]
            if not tasks:
                break
            await asyncio.gather(*tasks, return_exceptions=True)
        return self._record if run_id == self._run_id else None

    def _spawn(self, run_id: int, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        bucket = self._tasks.setdefault(run_id, set())
        bucket.add(task)

        def _forget(t: asyncio.Task) -> None:
            bucket.discard(t)
            if not bucket and self._tasks.get(run_id) is bucket:
                del self._tasks[run_id]

        task.add_done_callback(_forget)
        return task

    async def _run_primary(
        self,
        run_id: int,
        texture: EncodedPayload,
        silhouette: EncodedPayload,
        color: EncodedPayload,
    ) -> Optional[ConceptRecord]:
        try:
            seed = await self.gateway.synthesize_concept(texture, silhouette, color)
            record = ConceptRecord.from_seed(seed)
        except Exception as e:
            if run_id != self._run_id:
                logger.info(f"Dropping primary failure of superseded run {run_id}")
                return None
            if not isinstance(e, PrimaryGenerationError):
                e = PrimaryGenerationError(str(e))
            logger.error(f"Run {run_id} failed: {e}")
            self.state = RunState.FAILED
            self.errors.publish(RunFailure(run_id=run_id, message=str(e)))
            return None

        if run_id != self._run_id:
            logger.info(f"Dropping primary result of superseded run {run_id}")
            return None

        self._record = record
        self._pending = set(Enrichment)
        self.state = RunState.LIVE
        self.records.publish(record)
        self.themes.publish(record.theme)
        logger.info(f"Run {run_id} live: {record.name} ({record.theme.name})")

        self._dispatch_enrichments(run_id, record)
        return record

    def _dispatch_enrichments(self, run_id: int, record: ConceptRecord) -> None:
        calls = {
            Enrichment.ILLUSTRATION: self.gateway.synthesize_illustration(record.visual_prompt),
            Enrichment.LEADS: self.gateway.find_leads(record.name, list(record.design_tags)),
            Enrichment.MOOD_BOARD: self.gateway.synthesize_mood_board(record.theme.name),
        }
        for kind, coro in calls.items():
            self._spawn(run_id, self._run_enrichment(run_id, kind, coro))

    async def _run_enrichment(self, run_id: int, kind: Enrichment, coro) -> bool:
        try:
            value = await coro
        except Exception:
            logger.exception(f"Enrichment '{kind.value}' of run {run_id} raised; treating as empty")
            value = _EMPTY_RESULT[kind]
        return self.apply_completion(EnrichmentCompletion(run_id=run_id, kind=kind, value=value))

    # ── Merge ─────────────────────────────────────────────────────────────────

    def apply_completion(self, completion: EnrichmentCompletion) -> bool:
        """
        Merge one enrichment result into the live record.

        Dropped when the run was superseded or the kind is no longer pending
        (duplicate delivery). Returns True when a new record was published.
        """
        if completion.run_id != self._run_id or self._record is None:
            logger.debug(f"Dropping stale {completion.kind.value} from run {completion.run_id}")
            return False
        if completion.kind not in self._pending:
            logger.debug(f"Ignoring duplicate {completion.kind.value} for run {completion.run_id}")
            return False

        merged = self._record.merge(completion.kind, completion.value)
        self._pending.discard(completion.kind)

        changed = merged is not self._record
        if changed:
            self._record = merged
            self.records.publish(merged)
        else:
            logger.info(f"Run {completion.run_id}: nothing to show for {completion.kind.value}")

        if not self._pending:
            self.state = RunState.SETTLED
            logger.info(f"Run {completion.run_id} settled")
        return changed

    # ── Directed generation ───────────────────────────────────────────────────

    def start_directed(
        self,
        directive: str,
        reference: Optional[EncodedPayload],
        extras: Sequence[Optional[EncodedPayload]] = (),
    ) -> asyncio.Task:
        """
        Schedule a free-form directed generation. Independent of run state.

        Raises:
            ValidationError: empty directive, missing mandatory reference,
                or more than two extra references
        """
        if not directive or not directive.strip():
            raise ValidationError("A creative directive is required")
        if reference is None or not reference.data:
            raise ValidationError("Reference image 01 is required")
        extras = [p for p in extras if p is not None]
        if len(extras) > MAX_DIRECTED_EXTRAS:
            raise ValidationError(f"At most {MAX_DIRECTED_EXTRAS} extra reference images are allowed")

        return asyncio.get_running_loop().create_task(
            self._run_directed(directive.strip(), [reference, *extras])
        )

    async def _run_directed(
        self, directive: str, references: Sequence[EncodedPayload]
    ) -> Optional[bytes]:
        return await self.gateway.synthesize_directed(directive, references)
