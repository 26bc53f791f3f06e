"""Approval gate for sensitive tool calls.

States per session: Clear -> Pending(ApprovalRequest) -> Clear. At most one
request is pending per session. The gate never decides on its own: an
expired request can still be rejected, and nothing is rejected as a side
effect of cleanup.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from pagepilot.errors import ApprovalExpired, ApprovalNotPending, ApprovalPending
from pagepilot.logging import get_logger
from pagepilot.session.models import ApprovalAction, ApprovalRequest, Decision, Session

if TYPE_CHECKING:
    from pagepilot.config.schema import ApprovalConfig
    from pagepilot.core.llm.provider import ToolCallRequest
    from pagepilot.tools.registry import ToolRegistry

log = get_logger("approval")


@dataclass
class ApprovalPolicy:
    """Which calls need a human decision.

    Sensitive tools are gated unless named in ``auto_approve``.
    """

    auto_approve: frozenset[str] = field(default_factory=frozenset)
    timeout: float | None = None  # Seconds until a pending request expires

    @classmethod
    def from_config(cls, config: ApprovalConfig) -> ApprovalPolicy:
        return cls(auto_approve=frozenset(config.auto_approve), timeout=config.timeout)

    def requires_approval(self, registry: ToolRegistry, tool_name: str) -> bool:
        if tool_name in self.auto_approve:
            return False
        return registry.is_sensitive(tool_name)


class ApprovalGate:
    """Opens and resolves approval requests on a session."""

    def __init__(self, registry: ToolRegistry, policy: ApprovalPolicy | None = None) -> None:
        self._registry = registry
        self.policy = policy or ApprovalPolicy()

    def requires_approval(self, tool_name: str) -> bool:
        return self.policy.requires_approval(self._registry, tool_name)

    def open(
        self,
        session: Session,
        call: ToolCallRequest,
        arguments: dict[str, Any],
    ) -> ApprovalRequest:
        """Put ``call`` in front of the human.

        Raises:
            ApprovalPending: Another request is already pending on the session.
        """
        current = session.pending_approval
        if current is not None and current.is_pending:
            raise ApprovalPending(session.session_id, current.id)

        request = ApprovalRequest(session_id=session.session_id, tool_call=call, arguments=arguments)
        if self.policy.timeout is not None:
            request.expires_at = request.created_at + timedelta(seconds=self.policy.timeout)
        session.pending_approval = request
        log.info(
            "approval %s opened for %s",
            request.id,
            call.name,
        )
        return request

    def resolve(
        self,
        session: Session,
        action: ApprovalAction,
        edited_arguments: dict[str, Any] | None = None,
        *,
        now: datetime | None = None,
    ) -> ApprovalRequest:
        """Settle the pending request and clear the gate.

        For ``edit`` the new arguments are validated first; on failure the
        SchemaError propagates and the request stays pending.

        Raises:
            ApprovalNotPending: Nothing to resolve.
            ApprovalExpired: approve/edit after the request expired.
            SchemaError: edited arguments are invalid.
        """
        request = session.pending_approval
        if request is None or not request.is_pending:
            raise ApprovalNotPending(session.session_id)

        if action is ApprovalAction.REJECT:
            request.settle(Decision.REJECTED)
        else:
            now = now or datetime.now(timezone.utc)
            if request.expires_at is not None and request.is_expired(now):
                raise ApprovalExpired(request.id, request.expires_at)
            if action is ApprovalAction.EDIT:
                validated = self._registry.validate(request.tool_call.name, edited_arguments or {})
                request.settle(Decision.EDITED, validated)
            else:
                request.settle(Decision.APPROVED)

        session.pending_approval = None
        log.info(
            "approval %s resolved as %s",
            request.id,
            request.decision.value,
        )
        return request
