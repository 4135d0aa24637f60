"""
openbot - personal AI-agent runtime.

Turns an inbound message into a bounded sequence of upstream LLM calls and
tool executions, then returns the final reply.
"""

__version__ = "0.1.0"
