"""Session orchestration: models, approval gate, orchestrator, registry, storage."""

from pagepilot.session.approval import ApprovalGate, ApprovalPolicy
from pagepilot.session.models import (
    ApprovalAction,
    ApprovalRequest,
    Decision,
    Session,
    SessionState,
    TurnOutcome,
)
from pagepilot.session.orchestrator import SessionOrchestrator
from pagepilot.session.registry import SessionRegistry
from pagepilot.session.storage import MemorySessionStore, SessionStore, YamlSessionStore

__all__ = [
    "ApprovalAction",
    "ApprovalGate",
    "ApprovalPolicy",
    "ApprovalRequest",
    "Decision",
    "MemorySessionStore",
    "Session",
    "SessionOrchestrator",
    "SessionRegistry",
    "SessionState",
    "SessionStore",
    "TurnOutcome",
    "YamlSessionStore",
]
