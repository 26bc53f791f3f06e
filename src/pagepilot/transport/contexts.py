"""Registry of connected page contexts.

A page context is one browser tab running the page agent. Contexts connect
and vanish at any time; the registry tracks which ones are reachable and
which one is currently active.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from pagepilot.errors import TargetUnreachable
from pagepilot.logging import get_logger

log = get_logger("transport")


@runtime_checkable
class PageChannel(Protocol):
    """Outbound half of a page connection."""

    @property
    def is_open(self) -> bool:
        ...

    async def send(self, frame: dict[str, Any]) -> None:
        """Send one JSON frame. Raises on a broken connection."""
        ...


@dataclass
class PageContext:
    """One connected page context."""

    context_id: str
    channel: PageChannel
    url: str | None = None
    title: str | None = None
    connected_at: float = field(default_factory=time.time)

    @property
    def is_reachable(self) -> bool:
        return self.channel.is_open

    def describe(self) -> dict[str, Any]:
        return {
            "id": self.context_id,
            "url": self.url,
            "title": self.title,
            "connected_at": self.connected_at,
        }


class PageContextRegistry:
    """Tracks connected page contexts and the active one.

    All methods are synchronous and run on the event loop thread, so no lock
    is needed.
    """

    def __init__(self) -> None:
        self._contexts: dict[str, PageContext] = {}
        self._active_id: str | None = None

    def __len__(self) -> int:
        return len(self._contexts)

    def __contains__(self, context_id: object) -> bool:
        return context_id in self._contexts

    @property
    def active_id(self) -> str | None:
        return self._active_id

    def attach(
        self,
        context_id: str,
        channel: PageChannel,
        *,
        url: str | None = None,
        title: str | None = None,
        activate: bool = True,
    ) -> PageContext:
        """Register a connection. A reconnect under the same id replaces it."""
        context = PageContext(context_id=context_id, channel=channel, url=url, title=title)
        previous = self._contexts.get(context_id)
        if previous is not None and previous.channel is not channel:
            log.info("Page context %s reconnected; replacing old channel", context_id)
        self._contexts[context_id] = context
        if activate or self._active_id is None:
            self._active_id = context_id
        log.info("Page context %s attached (%s)", context_id, url or "no url")
        return context

    def detach(self, context_id: str, channel: PageChannel | None = None) -> bool:
        """Remove a context.

        When ``channel`` is given, the context is only removed if it is still
        served by that channel, so a stale disconnect cannot drop a newer
        connection under the same id.
        """
        context = self._contexts.get(context_id)
        if context is None:
            return False
        if channel is not None and context.channel is not channel:
            return False

        del self._contexts[context_id]
        if self._active_id == context_id:
            self._active_id = self._most_recent_id()
        log.info("Page context %s detached; active is now %s", context_id, self._active_id)
        return True

    def _most_recent_id(self) -> str | None:
        if not self._contexts:
            return None
        return max(self._contexts.values(), key=lambda c: c.connected_at).context_id

    def update(self, context_id: str, *, url: str | None = None, title: str | None = None) -> None:
        context = self._contexts.get(context_id)
        if context is None:
            return
        if url is not None:
            context.url = url
        if title is not None:
            context.title = title

    def activate(self, context_id: str) -> PageContext:
        """Make ``context_id`` the active context.

        Raises:
            TargetUnreachable: No such connected context.
        """
        context = self._contexts.get(context_id)
        if context is None or not context.is_reachable:
            raise TargetUnreachable(context_id, "no connected page context with that id")
        self._active_id = context_id
        return context

    def get(self, context_id: str) -> PageContext | None:
        return self._contexts.get(context_id)

    def resolve(self, target: str | None = None) -> PageContext:
        """Pick the context a request should go to, right now.

        Args:
            target: Explicit context id, or None for the active context.

        Raises:
            TargetUnreachable: The target (or active context) is missing or closed.
        """
        if target is not None:
            context = self._contexts.get(target)
            if context is None:
                raise TargetUnreachable(target, "no connected page context with that id")
        else:
            if self._active_id is None:
                raise TargetUnreachable(None)
            context = self._contexts[self._active_id]

        if not context.is_reachable:
            raise TargetUnreachable(context.context_id, "connection is closed")
        return context

    def list_contexts(self) -> list[dict[str, Any]]:
        """Describe connected contexts, oldest first, flagging the active one."""
        contexts = sorted(self._contexts.values(), key=lambda c: c.connected_at)
        return [
            {**c.describe(), "active": c.context_id == self._active_id} for c in contexts
        ]
