"""Wiring of the PagePilot runtime from a Config."""

from __future__ import annotations

from dataclasses import dataclass

from pagepilot.config.schema import Config
from pagepilot.core.llm.discovery import create_provider_from_config
from pagepilot.core.llm.provider import LLMProvider
from pagepilot.logging import get_logger
from pagepilot.session.approval import ApprovalGate, ApprovalPolicy
from pagepilot.session.orchestrator import SessionOrchestrator
from pagepilot.session.registry import SessionRegistry
from pagepilot.session.storage import MemorySessionStore, SessionStore, YamlSessionStore
from pagepilot.tools.registry import ToolRegistry, default_registry
from pagepilot.transport.contexts import PageContextRegistry
from pagepilot.transport.local import AssistanceCallback, LocalExecutor
from pagepilot.transport.transport import ExecutionTransport

log = get_logger("runtime")

_AUTO = object()


@dataclass
class Runtime:
    """Everything a server or CLI needs, built once per process."""

    config: Config
    tools: ToolRegistry
    contexts: PageContextRegistry
    transport: ExecutionTransport
    orchestrator: SessionOrchestrator
    sessions: SessionRegistry

    async def start(self) -> None:
        self.sessions.start()

    async def stop(self) -> None:
        await self.sessions.stop()
        self.transport.close()


def create_store(config: Config) -> SessionStore:
    if config.session.storage_dir:
        return YamlSessionStore(config.session.storage_dir)
    return MemorySessionStore()


def create_runtime(
    config: Config | None = None,
    *,
    llm: LLMProvider | None | object = _AUTO,
    store: SessionStore | None = None,
    tools: ToolRegistry | None = None,
    on_assistance: AssistanceCallback | None = None,
) -> Runtime:
    """Build a Runtime.

    Args:
        config: Configuration; defaults apply when None.
        llm: Model provider. Omitted = discovered from config and API keys;
            None = no model (every turn fails with ModelUnavailable).
        store: Session store; default from ``session.storage_dir``.
        tools: Tool registry; default is the built-in page tools.
        on_assistance: Called when the agent asks the human for help.
    """
    config = config or Config()
    tools = tools or default_registry()

    if llm is _AUTO:
        llm = create_provider_from_config(config.llm)
        if llm is None:
            log.warning("No model configured and no provider API key found")
        else:
            log.info("Using model %s", llm.model)

    if store is None:
        store = create_store(config)

    contexts = PageContextRegistry()
    transport = ExecutionTransport(
        contexts,
        LocalExecutor(contexts, on_assistance=on_assistance),
        default_timeout=config.transport.dispatch_timeout,
        local_timeout=config.transport.local_timeout,
    )
    gate = ApprovalGate(tools, ApprovalPolicy.from_config(config.approval))
    orchestrator = SessionOrchestrator(
        llm,  # type: ignore[arg-type]
        tools,
        gate,
        transport,
        store=store,
        max_steps=config.session.max_steps,
        max_tokens=config.llm.max_tokens,
        max_retries=config.llm.max_retries,
        retry_backoff=config.llm.retry_backoff,
    )
    sessions = SessionRegistry(
        orchestrator,
        store=store,
        idle_timeout=config.session.idle_timeout,
        sweep_interval=config.session.sweep_interval,
        max_sessions=config.session.max_sessions,
    )
    return Runtime(
        config=config,
        tools=tools,
        contexts=contexts,
        transport=transport,
        orchestrator=orchestrator,
        sessions=sessions,
    )
