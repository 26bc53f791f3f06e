"""Session registry: lifecycle, lookup and exclusive access for sessions.

The id -> slot map is the only shared mutable structure and is guarded by
one asyncio.Lock. Each slot carries its own lock so one session runs one
turn at a time while different sessions proceed independently.

Idle reclamation and capacity eviction drop a session from memory. With a
persistent store the saved copy stays and is restored on the next lookup;
with an ephemeral store the entry is deleted too, so the session is gone.
Neither ever touches a session that is waiting on an approval or has
callers running or queued on its lock.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pagepilot.errors import SessionExists, SessionNotFound
from pagepilot.logging import get_logger
from pagepilot.session.models import ApprovalAction, Session, SessionState, TurnOutcome

if TYPE_CHECKING:
    from pagepilot.session.orchestrator import SessionOrchestrator
    from pagepilot.session.storage import SessionStore

log = get_logger("registry")

_TRANSIENT_STATES = {
    SessionState.AWAITING_MODEL,
    SessionState.TOOL_CALL_PENDING,
    SessionState.DISPATCHING,
    SessionState.FOLDING_RESULT,
}


@dataclass
class _SessionSlot:
    session: Session
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    task: asyncio.Task[TurnOutcome] | None = None
    waiters: int = 0  # callers inside _run_exclusive, queued or running
    closed: bool = False

    @property
    def busy(self) -> bool:
        return self.waiters > 0 or self.lock.locked() or self.task is not None

    @property
    def has_pending_approval(self) -> bool:
        pending = self.session.pending_approval
        return pending is not None and pending.is_pending

    @property
    def reclaimable(self) -> bool:
        return not self.busy and not self.has_pending_approval


class SessionRegistry:
    """Manages concurrent sessions by id."""

    def __init__(
        self,
        orchestrator: SessionOrchestrator,
        *,
        store: SessionStore | None = None,
        idle_timeout: float = 1800.0,
        sweep_interval: float = 60.0,
        max_sessions: int | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.store = store
        self.idle_timeout = idle_timeout
        self.sweep_interval = sweep_interval
        self.max_sessions = max_sessions
        self._slots: dict[str, _SessionSlot] = {}
        self._lock = asyncio.Lock()
        self._sweeper: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        return len(self._slots)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def create_session(
        self,
        session_id: str | None = None,
        title: str | None = None,
    ) -> Session:
        """Create and register a new session.

        Raises:
            SessionExists: The id is live or persisted already.
        """
        session = Session()
        if session_id is not None:
            session.session_id = session_id
        if title:
            session.title = title

        async with self._lock:
            sid = session.session_id
            if sid in self._slots or (self.store is not None and self.store.load(sid) is not None):
                raise SessionExists(sid)
            self._make_room()
            self._slots[sid] = _SessionSlot(session)

        if self.store is not None:
            self.store.save(session.session_id, session.to_dict())
        log.info("Created session %s", session.session_id)
        return session

    async def get_session(self, session_id: str) -> Session:
        """Return a live session, restoring it from the store if needed.

        Raises:
            SessionNotFound: Neither live nor persisted.
        """
        slot = await self._get_slot(session_id)
        return slot.session

    async def list_sessions(self) -> list[Session]:
        """Live sessions, most recently active first."""
        async with self._lock:
            sessions = [slot.session for slot in self._slots.values()]
        return sorted(sessions, key=lambda s: s.last_activity, reverse=True)

    def list_persisted_ids(self) -> list[str]:
        return self.store.list_ids() if self.store is not None else []

    async def delete_session(self, session_id: str) -> None:
        """Delete a session from memory and the store.

        A turn in flight (model call or dispatch) is cancelled.

        Raises:
            SessionNotFound: Neither live nor persisted.
        """
        async with self._lock:
            slot = self._slots.pop(session_id, None)

        if slot is not None:
            slot.closed = True
            if slot.task is not None and not slot.task.done():
                log.info("Cancelling in-flight turn of session %s", session_id)
                slot.task.cancel()

        deleted = self.store.delete(session_id) if self.store is not None else False
        if slot is None and not deleted:
            raise SessionNotFound(session_id)
        log.info("Deleted session %s", session_id)

    async def _get_slot(self, session_id: str) -> _SessionSlot:
        async with self._lock:
            slot = self._slots.get(session_id)
            if slot is not None:
                return slot

            data = self.store.load(session_id) if self.store is not None else None
            if data is None:
                raise SessionNotFound(session_id)

            session = Session.from_dict(data)
            self._restore(session)
            self._make_room()
            slot = _SessionSlot(session)
            self._slots[session_id] = slot
            log.info("Restored session %s (%s)", session_id, session.state.value)
            return slot

    def _restore(self, session: Session) -> None:
        """Bring a freshly loaded session to a resumable state."""
        self.orchestrator.recover(session)
        if session.pending_approval is not None and session.pending_approval.is_pending:
            session.state = SessionState.APPROVAL_PENDING
        elif session.state in _TRANSIENT_STATES or session.state is SessionState.APPROVAL_PENDING:
            session.state = SessionState.IDLE
        session.touch()

    # ------------------------------------------------------------------
    # Caller interface
    # ------------------------------------------------------------------

    async def submit_user_message(self, session_id: str, text: str) -> TurnOutcome:
        """Run a turn for a new user message.

        Concurrent calls on the same session are serialised.
        """
        slot = await self._get_slot(session_id)
        return await self._run_exclusive(slot, lambda: self.orchestrator.submit(slot.session, text))

    async def resolve_approval(
        self,
        session_id: str,
        decision: ApprovalAction | str,
        edited_arguments: dict[str, Any] | None = None,
    ) -> TurnOutcome:
        """Resolve the session's pending approval and continue its turn."""
        action = ApprovalAction(decision)
        slot = await self._get_slot(session_id)
        return await self._run_exclusive(
            slot,
            lambda: self.orchestrator.resolve(slot.session, action, edited_arguments),
        )

    async def _run_exclusive(
        self,
        slot: _SessionSlot,
        start: Callable[[], Coroutine[Any, Any, TurnOutcome]],
    ) -> TurnOutcome:
        """Run one turn under the slot lock as a cancellable task.

        The slot counts as busy from the moment a caller arrives, so it
        cannot be evicted between one turn releasing the lock and the next
        queued caller acquiring it.
        """
        session_id = slot.session.session_id
        slot.waiters += 1
        try:
            async with slot.lock:
                if slot.closed:
                    raise SessionNotFound(session_id)
                slot.task = asyncio.ensure_future(start())
                try:
                    return await slot.task
                except asyncio.CancelledError:
                    if slot.closed:
                        raise SessionNotFound(session_id) from None
                    raise
                finally:
                    slot.task = None
                    slot.session.touch()
        finally:
            slot.waiters -= 1

    # ------------------------------------------------------------------
    # Reclamation
    # ------------------------------------------------------------------

    def _make_room(self) -> None:
        """Evict least-recently-active sessions until one more fits.

        Caller must hold the registry lock. If every session is busy or
        gated nothing is evicted and the registry runs over capacity.
        """
        if self.max_sessions is None:
            return
        while len(self._slots) >= self.max_sessions:
            candidates = [
                (slot.session.last_activity, sid)
                for sid, slot in self._slots.items()
                if slot.reclaimable
            ]
            if not candidates:
                log.warning(
                    "Session capacity %d reached and no session can be evicted",
                    self.max_sessions,
                )
                return
            _, victim = min(candidates)
            self._discard(victim)
            log.info("Evicted least recently active session %s", victim)

    def _discard(self, session_id: str) -> None:
        """Drop a reclaimed slot. Caller must hold the registry lock."""
        del self._slots[session_id]
        if self.store is not None and not self.store.persistent:
            self.store.delete(session_id)

    async def sweep_idle(self, now: float | None = None) -> list[str]:
        """Reclaim sessions idle longer than ``idle_timeout``.

        Returns:
            Ids of reclaimed sessions.
        """
        now = time.time() if now is None else now
        reclaimed: list[str] = []
        async with self._lock:
            for sid, slot in list(self._slots.items()):
                if not slot.reclaimable:
                    continue
                if now - slot.session.last_activity >= self.idle_timeout:
                    self._discard(sid)
                    reclaimed.append(sid)
        if reclaimed:
            log.info("Reclaimed %d idle session(s): %s", len(reclaimed), ", ".join(reclaimed))
        return reclaimed

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            await self.sweep_idle()

    def start(self) -> None:
        """Start the periodic idle sweep."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        """Stop the sweep and cancel in-flight turns."""
        if self._sweeper is not None:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None

        async with self._lock:
            tasks = [slot.task for slot in self._slots.values() if slot.task is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
