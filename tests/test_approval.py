"""
Tests for the risk-based security policy.
"""

import asyncio

import pytest

from openbot.interfaces import SecurityAction
from openbot.tools.approval import PendingApproval, RiskLevel, RiskPolicy


def test_risk_level_classification():
    """Test default risk level classifications."""
    policy = RiskPolicy()

    assert policy.get_risk_level("web_search") == RiskLevel.SAFE
    assert policy.get_risk_level("read_file") == RiskLevel.MODERATE
    assert policy.get_risk_level("shell") == RiskLevel.DANGEROUS
    assert policy.get_risk_level("write_file") == RiskLevel.DANGEROUS

    # Unknown tools should be moderate
    assert policy.get_risk_level("unknown_tool") == RiskLevel.MODERATE


def test_set_risk_level():
    """Test overriding risk levels."""
    policy = RiskPolicy()

    policy.set_risk_level("web_fetch", RiskLevel.DANGEROUS)
    assert policy.get_risk_level("web_fetch") == RiskLevel.DANGEROUS


@pytest.mark.asyncio
async def test_check_blocks_destructive_commands():
    """Test that blocked patterns win over everything else."""
    policy = RiskPolicy(approval_required=False)

    assert await policy.check("shell", "rm -rf /") == SecurityAction.BLOCK
    assert await policy.check("shell", "sudo shutdown -h now") == SecurityAction.BLOCK
    assert await policy.check("shell", "rm -rf ./build") == SecurityAction.ALLOW


@pytest.mark.asyncio
async def test_check_dangerous_needs_confirmation():
    """Test that dangerous tools require confirmation when enabled."""
    policy = RiskPolicy(approval_required=True)

    assert await policy.check("shell", "ls -la") == SecurityAction.CONFIRM
    assert await policy.check("write_file", "write notes.txt") == SecurityAction.CONFIRM
    assert await policy.check("web_fetch", "fetch https://example.com") == SecurityAction.ALLOW


@pytest.mark.asyncio
async def test_check_approval_disabled():
    """Test that approval can be disabled globally."""
    policy = RiskPolicy(approval_required=False)

    assert await policy.check("shell", "ls") == SecurityAction.ALLOW


def test_create_approval_request():
    """Test creating an approval request."""
    policy = RiskPolicy()
    approval = policy.create_approval_request("shell", "ls -la")

    assert approval.id
    assert approval.tool_name == "shell"
    assert approval.command == "ls -la"
    assert approval.risk_level == RiskLevel.DANGEROUS
    assert approval.is_pending


def test_approve_and_deny():
    """Test resolving requests."""
    policy = RiskPolicy()
    a1 = policy.create_approval_request("shell", "ls")
    a2 = policy.create_approval_request("shell", "rm -rf test")

    assert policy.approve(a1.id)
    assert a1.approved and not a1.is_pending
    assert policy.deny(a2.id)
    assert a2.denied

    # Already resolved
    assert not policy.approve(a1.id)
    assert not policy.approve("nonexistent_id")


def test_list_pending():
    """Test listing pending approvals."""
    policy = RiskPolicy()
    a1 = policy.create_approval_request("shell", "ls")
    a2 = policy.create_approval_request("write_file", "write a.txt")

    assert len(policy.list_pending()) == 2
    policy.approve(a1.id)
    pending = policy.list_pending()
    assert [p.id for p in pending] == [a2.id]


def test_pending_approval_format():
    """Test approval display formatting."""
    approval = RiskPolicy().create_approval_request("shell", "ls -la /home")

    display = approval.format_for_display()
    assert "Approval Required" in display
    assert "shell" in display
    assert approval.id in display
    assert "/approve" in display


@pytest.mark.asyncio
async def test_wait_for_approval_approved():
    """Test waiting for approval that gets approved."""
    policy = RiskPolicy()
    approval = policy.create_approval_request("shell", "ls")

    async def approve_later():
        await asyncio.sleep(0.05)
        policy.approve(approval.id)

    task = asyncio.create_task(approve_later())
    result = await policy.wait_for_approval(approval.id, timeout=5.0)
    await task

    assert result is True
    assert policy.list_pending() == []


@pytest.mark.asyncio
async def test_wait_for_approval_timeout():
    """Test approval timeout."""
    policy = RiskPolicy()
    approval = policy.create_approval_request("shell", "ls")

    assert await policy.wait_for_approval(approval.id, timeout=0.05) is False
    assert policy.list_pending() == []


@pytest.mark.asyncio
async def test_wait_for_approval_cancelled_forgets_request():
    """Test that a cancelled wait does not leave the request pending."""
    policy = RiskPolicy()
    approval = policy.create_approval_request("shell", "ls")

    task = asyncio.create_task(policy.wait_for_approval(approval.id, timeout=5.0))
    await asyncio.sleep(0.01)
    assert policy.list_pending() == [approval]

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert policy.list_pending() == []
    assert policy.approve(approval.id) is False


@pytest.mark.asyncio
async def test_request_confirmation_without_notifier():
    """Test that nobody to ask means denied."""
    assert await RiskPolicy().request_confirmation("shell", "ls") is False


@pytest.mark.asyncio
async def test_request_confirmation_with_notifier():
    """Test the notify-then-wait flow."""
    notified: list[PendingApproval] = []
    policy: RiskPolicy

    async def notifier(approval: PendingApproval) -> None:
        notified.append(approval)
        asyncio.get_running_loop().call_later(0.01, policy.approve, approval.id)

    policy = RiskPolicy(notifier=notifier, approval_timeout=5.0)

    assert await policy.request_confirmation("shell", "make build") is True
    assert notified[0].command == "make build"
