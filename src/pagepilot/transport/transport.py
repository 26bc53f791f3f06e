"""Request/response execution transport.

Every dispatch gets a fresh correlation id and a future. The page context
answers with a ``result`` frame carrying that id; ``deliver`` completes the
future. On timeout the id is forgotten, so a late answer is logged and
dropped instead of being applied twice. Nothing here ever retries.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from pagepilot.errors import PagePilotError, TargetUnreachable
from pagepilot.logging import get_logger
from pagepilot.transport.contexts import PageChannel, PageContextRegistry
from pagepilot.transport.local import LocalExecutor
from pagepilot.transport.messages import ErrorKind, ExecutionRequest, ExecutionResult, encode_frame

log = get_logger("transport")


@dataclass
class _PendingDispatch:
    future: asyncio.Future[ExecutionResult]
    context_id: str
    tool_name: str


def _error_kind(error: PagePilotError) -> ErrorKind:
    try:
        return ErrorKind(error.kind)
    except ValueError:
        return ErrorKind.EXECUTION_ERROR


class ExecutionTransport:
    """Dispatches ExecutionRequests to page contexts or the local executor.

    Failures are returned as ``ExecutionResult(success=False)``, never raised.
    """

    def __init__(
        self,
        contexts: PageContextRegistry,
        local: LocalExecutor | None = None,
        *,
        default_timeout: float = 30.0,
        local_timeout: float = 65.0,
    ) -> None:
        self.contexts = contexts
        self.local = local if local is not None else LocalExecutor(contexts)
        self.default_timeout = default_timeout
        self.local_timeout = local_timeout
        self._pending: dict[str, _PendingDispatch] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def dispatch(
        self,
        request: ExecutionRequest,
        timeout: float | None = None,
        target: str | None = None,
    ) -> ExecutionResult:
        """Send a request to a page context and wait for its result.

        Args:
            request: The request; a ``tab_id`` argument selects the target
                when ``target`` is not given and is stripped before sending.
            timeout: Seconds to wait; defaults to ``default_timeout``.
            target: Page context id; None means the active context at the
                moment of the call.
        """
        timeout = self.default_timeout if timeout is None else timeout

        arguments = dict(request.arguments)
        tab_id = arguments.pop("tab_id", None)
        if target is None and tab_id is not None:
            target = str(tab_id)
        if tab_id is not None:
            request = request.model_copy(update={"arguments": arguments})

        try:
            context = self.contexts.resolve(target)
        except TargetUnreachable as e:
            log.info("Dispatch of %s failed: %s", request.tool_name, e)
            return ExecutionResult.failure(request.request_id, ErrorKind.TARGET_UNREACHABLE, str(e))

        loop = asyncio.get_running_loop()
        future: asyncio.Future[ExecutionResult] = loop.create_future()
        self._pending[request.request_id] = _PendingDispatch(
            future=future, context_id=context.context_id, tool_name=request.tool_name
        )

        try:
            try:
                await context.channel.send(encode_frame(request))
            except Exception as e:
                log.warning(
                    "Send to page context %s failed for %s: %s",
                    context.context_id,
                    request.tool_name,
                    e,
                )
                return ExecutionResult.failure(
                    request.request_id,
                    ErrorKind.TARGET_UNREACHABLE,
                    f"Page context '{context.context_id}' is unreachable: {e}",
                )

            log.debug(
                "Dispatched %s [%s] to %s (timeout %.1fs)",
                request.tool_name,
                request.request_id,
                context.context_id,
                timeout,
            )
            try:
                return await asyncio.wait_for(future, timeout)
            except asyncio.TimeoutError:
                log.warning(
                    "No result for %s [%s] within %.0f ms",
                    request.tool_name,
                    request.request_id,
                    timeout * 1000,
                )
                return ExecutionResult.failure(
                    request.request_id,
                    ErrorKind.TIMEOUT,
                    f"'{request.tool_name}' did not complete within {timeout * 1000:.0f} ms",
                )
        finally:
            self._pending.pop(request.request_id, None)

    async def execute_local(
        self,
        request: ExecutionRequest,
        timeout: float | None = None,
    ) -> ExecutionResult:
        """Run a local tool with the same timeout discipline as dispatch."""
        timeout = self.local_timeout if timeout is None else timeout
        try:
            payload = await asyncio.wait_for(self.local.execute(request), timeout)
        except asyncio.TimeoutError:
            return ExecutionResult.failure(
                request.request_id,
                ErrorKind.TIMEOUT,
                f"'{request.tool_name}' did not complete within {timeout * 1000:.0f} ms",
            )
        except PagePilotError as e:
            return ExecutionResult.failure(request.request_id, _error_kind(e), str(e))
        except Exception as e:
            log.exception("Local tool %s failed", request.tool_name)
            return ExecutionResult.failure(request.request_id, ErrorKind.EXECUTION_ERROR, str(e))
        return ExecutionResult.ok(request.request_id, payload)

    def deliver(self, result: ExecutionResult, context_id: str | None = None) -> bool:
        """Complete the dispatch waiting on ``result.request_id``.

        Returns:
            True if a waiting dispatch took the result, False if it was
            discarded (unknown, late, or from the wrong context).
        """
        pending = self._pending.get(result.request_id)
        if pending is None:
            log.info("Discarding result for unknown or expired request %s", result.request_id)
            return False
        if context_id is not None and context_id != pending.context_id:
            log.warning(
                "Discarding result for %s from %s; it was sent to %s",
                result.request_id,
                context_id,
                pending.context_id,
            )
            return False
        if pending.future.done():
            return False
        pending.future.set_result(result)
        return True

    def detach_context(self, context_id: str, channel: PageChannel | None = None) -> int:
        """Drop a page context and fail the dispatches waiting on it.

        Returns:
            Number of in-flight dispatches failed.
        """
        if not self.contexts.detach(context_id, channel):
            return 0
        failed = 0
        for request_id, pending in list(self._pending.items()):
            if pending.context_id != context_id or pending.future.done():
                continue
            pending.future.set_result(
                ExecutionResult.failure(
                    request_id,
                    ErrorKind.TARGET_UNREACHABLE,
                    f"Page context '{context_id}' disconnected before answering",
                )
            )
            failed += 1
        return failed

    def close(self) -> None:
        """Fail every in-flight dispatch as cancelled."""
        for request_id, pending in list(self._pending.items()):
            if not pending.future.done():
                pending.future.set_result(
                    ExecutionResult.failure(
                        request_id, ErrorKind.CANCELLED, "Transport shut down"
                    )
                )
