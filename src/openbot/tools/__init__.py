"""
Tools module: tool plumbing and the default security policy.

Concrete tools (shell, files, web) are provided by the host application
and registered on a ToolRegistry.
"""

from .approval import DEFAULT_RISK_MAP, PendingApproval, RiskLevel, RiskPolicy
from .base import BaseTool, FunctionTool, tool, validate_arguments
from .registry import ToolRegistry

__all__ = [
    "BaseTool",
    "FunctionTool",
    "tool",
    "validate_arguments",
    "ToolRegistry",
    "RiskPolicy",
    "RiskLevel",
    "PendingApproval",
    "DEFAULT_RISK_MAP",
]
