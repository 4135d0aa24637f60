"""
Execution approval - a risk-based SecurityPolicy.

Security model:
- Commands matching a blocked pattern never run
- Tools are classified by risk level (safe, moderate, dangerous)
- Safe and moderate tools execute immediately
- Dangerous tools need explicit approval before execution

Approval requests are surfaced through a notifier callback (for example a
chat message with an approval id) and resolved with approve()/deny().
"""

import asyncio
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Awaitable, Callable

import structlog

from ..interfaces import SecurityAction, SecurityPolicy

logger = structlog.get_logger()


class RiskLevel(str, Enum):
    """Risk classification for tool operations."""
    SAFE = "safe"              # search, fetch, system info
    MODERATE = "moderate"      # file read, code exec
    DANGEROUS = "dangerous"    # shell, file write - require approval


DEFAULT_RISK_MAP: dict[str, RiskLevel] = {
    # Safe
    "web_search": RiskLevel.SAFE,
    "web_fetch": RiskLevel.SAFE,
    "system_info": RiskLevel.SAFE,
    "list_files": RiskLevel.SAFE,

    # Moderate
    "read_file": RiskLevel.MODERATE,
    "execute_code": RiskLevel.MODERATE,
    "cron": RiskLevel.MODERATE,

    # Dangerous
    "shell": RiskLevel.DANGEROUS,
    "exec": RiskLevel.DANGEROUS,
    "write_file": RiskLevel.DANGEROUS,
}

DEFAULT_BLOCKED_PATTERNS: list[str] = [
    r"rm\s+-rf\s+/(\s|$)",
    r"\bmkfs(\.\w+)?\b",
    r"\bdd\s+if=.*\s+of=/dev/",
    r":\(\)\s*\{\s*:\|:&\s*\};:",
    r"\bshutdown\b",
    r"\breboot\b",
]

ApprovalNotifier = Callable[["PendingApproval"], Awaitable[None]]


@dataclass
class PendingApproval:
    """A tool execution waiting for user approval."""
    id: str
    tool_name: str
    command: str
    risk_level: RiskLevel
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc) + timedelta(minutes=5))
    approved: bool = False
    denied: bool = False

    @property
    def is_expired(self) -> bool:
        return datetime.now(timezone.utc) > self.expires_at

    @property
    def is_pending(self) -> bool:
        return not self.approved and not self.denied and not self.is_expired

    def format_for_display(self) -> str:
        """Format this approval request for display in chat."""
        return (
            f"**Approval Required**\n\n"
            f"**Tool:** `{self.tool_name}`\n"
            f"**Risk:** {self.risk_level.value}\n"
            f"**Command:**\n```\n{self.command[:500]}\n```\n\n"
            f"Reply `/approve {self.id}` to execute\n"
            f"Reply `/deny {self.id}` to cancel\n"
            f"_Expires in 5 minutes_"
        )


class RiskPolicy(SecurityPolicy):
    """SecurityPolicy driven by a blocked-pattern list and a tool risk map."""

    def __init__(
        self,
        risk_map: dict[str, RiskLevel] | None = None,
        blocked_patterns: list[str] | None = None,
        approval_required: bool = True,
        notifier: ApprovalNotifier | None = None,
        approval_timeout: float = 300.0,
    ):
        self._risk_map = risk_map if risk_map is not None else dict(DEFAULT_RISK_MAP)
        patterns = blocked_patterns if blocked_patterns is not None else DEFAULT_BLOCKED_PATTERNS
        self._blocked = [re.compile(p, re.IGNORECASE) for p in patterns]
        self._pending: dict[str, PendingApproval] = {}
        self._approval_events: dict[str, asyncio.Event] = {}
        self.approval_required = approval_required
        self.notifier = notifier
        self.approval_timeout = approval_timeout

    def get_risk_level(self, tool_name: str) -> RiskLevel:
        """Get the risk level for a tool."""
        return self._risk_map.get(tool_name, RiskLevel.MODERATE)

    def set_risk_level(self, tool_name: str, level: RiskLevel) -> None:
        """Override the risk level for a tool."""
        self._risk_map[tool_name] = level

    async def check(self, tool_name: str, command: str) -> SecurityAction:
        command = command.strip()

        for pattern in self._blocked:
            if pattern.search(command):
                logger.warning("Command blocked", tool=tool_name, command=command, pattern=pattern.pattern)
                return SecurityAction.BLOCK

        level = self.get_risk_level(tool_name)
        if level == RiskLevel.DANGEROUS and self.approval_required:
            logger.info("Command requires confirmation", tool=tool_name, command=command)
            return SecurityAction.CONFIRM
        return SecurityAction.ALLOW

    async def request_confirmation(self, tool_name: str, command: str) -> bool:
        """Create an approval request, notify, and wait for the decision.

        Without a notifier nobody can answer, so the request is denied.
        """
        if self.notifier is None:
            logger.info("No approval notifier, denying", tool=tool_name)
            return False

        approval = self.create_approval_request(tool_name, command)
        await self.notifier(approval)
        return await self.wait_for_approval(approval.id, timeout=self.approval_timeout)

    def create_approval_request(self, tool_name: str, command: str) -> PendingApproval:
        """Create a pending approval request."""
        approval = PendingApproval(
            id=uuid.uuid4().hex[:8],
            tool_name=tool_name,
            command=command,
            risk_level=self.get_risk_level(tool_name),
        )
        self._pending[approval.id] = approval
        self._approval_events[approval.id] = asyncio.Event()

        logger.info(
            "Approval request created",
            approval_id=approval.id,
            tool=tool_name,
            risk=approval.risk_level.value,
        )
        return approval

    def approve(self, approval_id: str) -> bool:
        """Approve a pending request."""
        return self._resolve(approval_id, approved=True)

    def deny(self, approval_id: str) -> bool:
        """Deny a pending request."""
        return self._resolve(approval_id, approved=False)

    def _resolve(self, approval_id: str, approved: bool) -> bool:
        approval = self._pending.get(approval_id)
        if approval is None or not approval.is_pending:
            return False

        if approved:
            approval.approved = True
        else:
            approval.denied = True
        event = self._approval_events.get(approval_id)
        if event:
            event.set()

        logger.info("Approval resolved", approval_id=approval_id, tool=approval.tool_name, approved=approved)
        return True

    async def wait_for_approval(self, approval_id: str, timeout: float = 300.0) -> bool:
        """Wait for an approval decision. Returns True if approved."""
        event = self._approval_events.get(approval_id)
        if event is None:
            return False

        try:
            await asyncio.wait_for(event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.info("Approval timed out", approval_id=approval_id)
            return False
        finally:
            self._approval_events.pop(approval_id, None)
            approval = self._pending.pop(approval_id, None)

        return approval.approved if approval else False

    def list_pending(self) -> list[PendingApproval]:
        """List all pending approvals."""
        return [a for a in self._pending.values() if a.is_pending]
