"""
LLM module: upstream clients and failover.

Providers:
- OpenAI chat completions (also OpenRouter and compatible APIs)
- Anthropic messages API
- Ollama native chat
"""

from .base import (
    BaseLLM,
    ChatRequest,
    ChatResponse,
    Message,
    StreamEvent,
    StreamEventType,
    ToolCall,
    ToolDefinition,
    Usage,
    decode_tool_arguments,
)
from .anthropic import AnthropicLLM
from .factory import create_failover_chain, create_llm, create_providers
from .failover import FailoverChain
from .http import create_http_client
from .ollama import OllamaLLM
from .openai import OpenAILLM
from .retry import RetryExecutor

__all__ = [
    "BaseLLM",
    "ChatRequest",
    "ChatResponse",
    "Message",
    "StreamEvent",
    "StreamEventType",
    "ToolCall",
    "ToolDefinition",
    "Usage",
    "decode_tool_arguments",
    "AnthropicLLM",
    "OpenAILLM",
    "OllamaLLM",
    "FailoverChain",
    "RetryExecutor",
    "create_http_client",
    "create_llm",
    "create_failover_chain",
    "create_providers",
]
