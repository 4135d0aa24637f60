"""
Command-line interface for openbot.
"""

import argparse
import asyncio
import logging
import sys

import structlog

from .agent import Agent, RateLimiter
from .config import Settings, get_settings
from .errors import AgentError
from .llm import create_http_client, create_llm
from .tools import RiskPolicy, ToolRegistry

logger = structlog.get_logger()


def configure_logging(level: str = "INFO") -> None:
    """Route structlog through stdlib logging with a console renderer."""
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=getattr(logging, level, logging.INFO))
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=True),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def main() -> None:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="openbot",
        description="openbot - a tool-calling agent over several LLM providers",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    chat_parser = subparsers.add_parser("chat", help="Chat with the agent in the terminal")
    chat_parser.add_argument("-m", "--message", help="Send a single message and exit")
    chat_parser.add_argument("-p", "--provider", default="", help="Provider to use instead of the failover chain")

    subparsers.add_parser("health", help="Probe every configured provider")

    config_parser = subparsers.add_parser("config", help="Show configuration")
    config_parser.add_argument("--check", action="store_true", help="Check configuration validity")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    settings = get_settings()
    configure_logging("DEBUG" if settings.debug else settings.log_level)

    if args.command == "chat":
        asyncio.run(run_chat(settings, args.message, args.provider))
    elif args.command == "health":
        ok = asyncio.run(check_health(settings))
        sys.exit(0 if ok else 1)
    elif args.command == "config":
        ok = show_config(settings, args.check)
        sys.exit(0 if ok else 1)
    else:
        parser.print_help()


async def run_chat(settings: Settings, message: str | None = None, provider: str = "") -> None:
    """Interactive REPL on top of Agent.process_direct."""
    agent = Agent(
        tools=ToolRegistry(),
        security=RiskPolicy(),
        rate_limiter=RateLimiter(settings.rate_limit_burst, settings.rate_limit_per_minute),
        settings=settings,
    )

    try:
        if message is not None:
            print(await _ask(agent, message, provider))
            return

        print(f"openbot ({agent.llm.name}) - type 'exit' to quit\n")
        while True:
            try:
                text = await asyncio.to_thread(input, "> ")
            except EOFError:
                break
            text = text.strip()
            if not text:
                continue
            if text in ("exit", "quit", "/exit"):
                break
            print(await _ask(agent, text, provider))
            print()
    finally:
        await agent.aclose()


async def _ask(agent: Agent, text: str, provider: str = "") -> str:
    try:
        return await agent.process_direct(text, provider=provider)
    except AgentError as e:
        logger.error("Turn failed", error=str(e))
        return f"Error: {e}"


async def check_health(settings: Settings) -> bool:
    """Probe each provider of the failover chain. True if any is healthy."""
    http_client = create_http_client(settings.http_timeout)
    any_ok = False
    try:
        for provider in settings.failover_providers_list:
            try:
                client = create_llm(settings.get_llm_config(provider), http_client, settings.max_retries)
            except ValueError as e:
                print(f"❌ {provider}: {e}")
                continue
            ok = await client.healthy()
            any_ok = any_ok or ok
            print(f"{'✅' if ok else '❌'} {client.name} ({client.model})")
    finally:
        await http_client.aclose()
    return any_ok


def show_config(settings: Settings, check: bool) -> bool:
    """Show current configuration. Returns False if the check found errors."""

    def mask(value: str) -> str:
        if not value:
            return "(not set)"
        return value[:4] + "..." + value[-4:] if len(value) > 10 else "****"

    print("\n=== openbot Configuration ===\n")

    print("LLM Providers:")
    print(f"  Default: {settings.default_provider}")
    print(f"  Default Model: {settings.default_model or '(provider default)'}")
    print(f"  Failover Order: {' -> '.join(settings.failover_providers_list)}")
    print(f"  OpenAI Key: {mask(settings.openai_api_key)}")
    print(f"  Anthropic Key: {mask(settings.anthropic_api_key)}")
    print(f"  OpenRouter Key: {mask(settings.openrouter_api_key)}")
    print(f"  Ollama URL: {settings.ollama_base_url}")

    print("\nAgent:")
    print(f"  Max Iterations: {settings.max_iterations}")
    print(f"  Concurrency: {settings.concurrency}")
    print(f"  Parallel Tools: {settings.max_parallel_tools}")
    print(f"  Streaming: {settings.stream_responses}")
    print(f"  Rate Limit: {settings.rate_limit_per_minute}/min (burst {settings.rate_limit_burst})")
    print(f"  Compaction Budget: {settings.compaction_max_tokens} tokens")
    print(f"  Allowed Tools: {settings.allowed_tools or '(all)'}")
    print(f"  Denied Tools: {settings.denied_tools or '(none)'}")

    if not check:
        return True

    print("\n=== Configuration Check ===\n")
    errors = []
    warnings = []

    keys = {
        "openai": settings.openai_api_key,
        "anthropic": settings.anthropic_api_key,
        "openrouter": settings.openrouter_api_key,
    }
    for provider in settings.failover_providers_list:
        if provider not in keys and provider != "ollama":
            errors.append(f"Unknown provider in failover list: {provider}")
        elif provider in keys and not keys[provider]:
            errors.append(f"{provider.upper()}_API_KEY is required for provider {provider}")

    if settings.max_iterations <= 0:
        warnings.append("MAX_ITERATIONS is not positive, the default of 20 is used")
    if settings.compaction_min_recent <= 0:
        warnings.append("COMPACTION_MIN_RECENT is not positive, the default of 4 is used")

    if errors:
        print("❌ Errors:")
        for e in errors:
            print(f"   - {e}")

    if warnings:
        print("⚠️  Warnings:")
        for w in warnings:
            print(f"   - {w}")

    if not errors and not warnings:
        print("✅ Configuration looks good!")
    elif not errors:
        print("\n✅ Configuration is valid (with warnings)")
    else:
        print("\n❌ Configuration has errors")
    return not errors


if __name__ == "__main__":
    main()
