"""
Core agent implementation: the tool-calling loop.

For every inbound message the agent:
1. Builds the message list from the system prompt, stored history and the new turn
2. Compacts it when it grows over the token budget
3. Calls the upstream LLM (through the shared rate limiter)
4. Executes requested tools, routing them through the security policy
5. Repeats until the model answers without tool calls or the iteration
   limit is reached
"""

import asyncio
from typing import Any

import structlog

from ..config import Settings, get_settings
from ..errors import AgentError
from ..interfaces import (
    InboundBus,
    InboundMessage,
    OutboundMessage,
    OutboundSink,
    SecurityAction,
    SecurityPolicy,
    SessionStore,
    ToolExecutor,
)
from ..llm import BaseLLM, ChatRequest, ChatResponse, Message, StreamEvent, StreamEventType, ToolCall, ToolDefinition
from ..llm.failover import FailoverChain
from ..llm.factory import create_providers
from ..llm.http import create_http_client
from ..tools.registry import ToolRegistry
from .compaction import ContextCompactor
from .parser import extract_tool_calls, strip_role_prefix
from .prompt import PromptBuilder
from .ratelimit import RateLimiter
from .session import InMemorySessionStore, generate_title
from .toolfilter import ToolFilter

logger = structlog.get_logger()

FALLBACK_RESPONSE = "I've completed processing but have no additional response."


def extract_security_command(tool_call: ToolCall) -> str:
    """Build the command string a security policy evaluates for a tool call.

    An empty string means there is nothing to evaluate.
    """
    def arg(key: str) -> str:
        value = tool_call.arguments.get(key)
        return "" if value is None else str(value)

    if tool_call.name in ("shell", "exec"):
        return arg("command")
    if tool_call.name == "write_file":
        path = arg("path")
        return f"write {path}" if path else ""
    if tool_call.name == "web_fetch":
        url = arg("url")
        return f"fetch {url}" if url else ""
    return ""


class Agent:
    """Processes inbound messages through the LLM/tool loop.

    Every collaborator is injected. Only the LLM, the rate limiter and the
    HTTP pool are shared between concurrent turns.

    `providers` maps names to clients a message may select through
    `InboundMessage.provider`; unknown names fall back to `llm`. When no
    `llm` is given, one client per configured provider is built over a
    single HTTP pool that `aclose()` releases.
    """

    def __init__(
        self,
        llm: BaseLLM | None = None,
        tools: ToolExecutor | None = None,
        security: SecurityPolicy | None = None,
        sessions: SessionStore | None = None,
        bus: InboundBus | None = None,
        outbound: OutboundSink | None = None,
        rate_limiter: RateLimiter | None = None,
        settings: Settings | None = None,
        compactor: ContextCompactor | None = None,
        prompt_builder: PromptBuilder | None = None,
        providers: dict[str, BaseLLM] | None = None,
        tool_filter: ToolFilter | None = None,
    ):
        self.settings = settings or get_settings()
        self._http_client = None
        if llm is None:
            self._http_client = create_http_client(self.settings.http_timeout)
            named = create_providers(self.settings, http_client=self._http_client)
            llm = FailoverChain(list(named.values()))
            if providers is None:
                providers = named
        self.llm = llm
        self.providers = dict(providers or {})
        self.tool_filter = tool_filter or ToolFilter(
            allowed=self.settings.allowed_tools_list,
            denied=self.settings.denied_tools_list,
        )
        self.tools = tools if tools is not None else ToolRegistry()
        self.security = security
        self.sessions = sessions if sessions is not None else InMemorySessionStore()
        self.bus = bus
        if outbound is None and isinstance(bus, OutboundSink):
            outbound = bus
        self.outbound = outbound
        self.rate_limiter = rate_limiter or RateLimiter(
            max_burst=self.settings.rate_limit_burst,
            rate_per_minute=self.settings.rate_limit_per_minute,
        )
        self.compactor = compactor or ContextCompactor(
            self.llm,
            max_tokens=self.settings.compaction_max_tokens,
            min_recent=self.settings.compaction_min_recent,
            rate_limiter=self.rate_limiter,
        )
        self.prompt_builder = prompt_builder or PromptBuilder(base_prompt=self.settings.system_prompt)

        self.max_iterations = self.settings.max_iterations if self.settings.max_iterations > 0 else 20
        self.max_parallel_tools = self.settings.max_parallel_tools if self.settings.max_parallel_tools > 0 else 5

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def run(self, stop: asyncio.Event | None = None) -> None:
        """Consume the inbound bus until it closes, `stop` is set or the task is cancelled.

        At most `settings.concurrency` turns run at once. When the bus closes
        or `stop` is set, turns already running are allowed to finish; when
        this coroutine is cancelled they are cancelled too.
        """
        if self.bus is None:
            raise AgentError("no inbound bus configured")

        concurrency = self.settings.concurrency if self.settings.concurrency > 0 else 3
        semaphore = asyncio.Semaphore(concurrency)
        tasks: set[asyncio.Task] = set()
        inbound = self.bus.subscribe().__aiter__()
        stop_waiter = asyncio.ensure_future(stop.wait()) if stop is not None else None
        next_message: asyncio.Future | None = None

        logger.info("Agent loop started", concurrency=concurrency, provider=self.llm.name)
        try:
            while True:
                next_message = asyncio.ensure_future(inbound.__anext__())
                waiters: set[asyncio.Future] = {next_message}
                if stop_waiter is not None:
                    waiters.add(stop_waiter)

                done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
                if next_message not in done:
                    next_message.cancel()
                    logger.info("Stop requested, agent loop stopping")
                    break

                try:
                    message = next_message.result()
                except StopAsyncIteration:
                    logger.info("Inbound bus closed, agent loop stopping")
                    break

                await semaphore.acquire()
                task = asyncio.create_task(self._process_message(message, semaphore))
                tasks.add(task)
                task.add_done_callback(tasks.discard)

            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
            raise
        finally:
            if next_message is not None and not next_message.done():
                next_message.cancel()
            if stop_waiter is not None:
                stop_waiter.cancel()

    async def process_direct(self, text: str, channel: str = "cli", chat_id: str = "direct", provider: str = "") -> str:
        """Process one message and return the reply.

        Raises AgentError when the turn fails. Cancellation propagates.
        """
        message = InboundMessage(content=text, channel=channel, chat_id=chat_id, provider=provider)
        try:
            return await self.handle_message(message)
        except AgentError:
            raise
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise AgentError(f"failed to process message: {e}") from e

    async def _process_message(self, message: InboundMessage, semaphore: asyncio.Semaphore) -> None:
        """Run one bus-delivered turn and send the reply back."""
        try:
            logger.info(
                "Processing message",
                channel=message.channel,
                sender=message.sender_id,
                content_len=len(message.content),
            )
            await self._send_event(message, StreamEvent(type=StreamEventType.THINKING))

            try:
                response = await self.handle_message(message)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception("Message processing failed", channel=message.channel, chat_id=message.chat_id)
                response = f"Sorry, I encountered an error: {e}"

            await self._deliver(OutboundMessage(
                channel=message.channel,
                chat_id=message.chat_id,
                content=response,
                stream_event=StreamEvent(type=StreamEventType.DONE, content=response),
            ))
        finally:
            semaphore.release()

    # ------------------------------------------------------------------
    # The turn
    # ------------------------------------------------------------------

    def resolve_provider(self, message: InboundMessage) -> BaseLLM:
        """Return the client selected by `message.provider`, or the default one."""
        if message.provider:
            llm = self.providers.get(message.provider)
            if llm is not None:
                return llm
            logger.warning("Requested provider not available, using default", requested=message.provider)
        return self.llm

    async def handle_message(self, message: InboundMessage) -> str:
        """Run a full turn for `message` and return the final reply."""
        llm = self.resolve_provider(message)
        try:
            conversation_id = await self.sessions.get_or_create_conversation(
                message.session_key,
                provider=llm.name,
                model=llm.model,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise AgentError(f"session error: {e}") from e

        try:
            history = await self.sessions.get_history(conversation_id, self.settings.history_limit)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Failed to load history, continuing without it", error=str(e))
            history = []

        tool_defs = self.tool_filter.filter_definitions(self.tools.list_definitions())
        messages = self.prompt_builder.build_messages(
            history,
            message.content,
            channel=message.channel,
            chat_id=message.chat_id,
            tools=tool_defs,
        )

        final_content = await self._run_loop(llm, message, messages, tool_defs)

        await self._persist(conversation_id, message, final_content, first_turn=not history)
        return final_content

    async def _run_loop(
        self,
        llm: BaseLLM,
        message: InboundMessage,
        messages: list[Message],
        tool_defs: list[ToolDefinition],
    ) -> str:
        final_content = ""

        for iteration in range(self.max_iterations):
            messages = await self.compactor.compact(messages)
            logger.debug("Agent iteration", iteration=iteration + 1, messages=len(messages))

            await self.rate_limiter.wait()

            request = ChatRequest(
                messages=list(messages),
                tools=tool_defs,
                max_tokens=self.settings.max_tokens,
                temperature=self.settings.temperature,
            )
            if self._should_stream(llm):
                response = await self._chat_streaming(llm, message, request)
            else:
                response = await llm.chat(request)

            if not response.has_tool_calls and response.content:
                extracted = extract_tool_calls(response.content)
                if extracted:
                    logger.info("Extracted tool calls from content text", count=len(extracted))
                    response.tool_calls = extracted
                    response.content = ""

            if not response.has_tool_calls:
                final_content = strip_role_prefix(response.content.strip())
                break

            messages.append(Message(role="assistant", content=response.content, tool_calls=response.tool_calls))
            results = await self._execute_tools(message, response.tool_calls)
            for call, result in zip(response.tool_calls, results):
                messages.append(Message(role="tool", content=result, tool_call_id=call.id, tool_name=call.name))
        else:
            logger.warning("Reached max iterations", max_iterations=self.max_iterations)

        return final_content or FALLBACK_RESPONSE

    def _should_stream(self, llm: BaseLLM) -> bool:
        return self.settings.stream_responses and self.outbound is not None and llm.supports_streaming

    async def _chat_streaming(self, llm: BaseLLM, message: InboundMessage, request: ChatRequest) -> ChatResponse:
        """Stream one upstream call, forwarding every event to the outbound sink."""
        request.stream = True
        content: list[str] = []
        tool_calls: list[ToolCall] = []

        async for event in llm.chat_stream(request):
            if event.type == StreamEventType.TOKEN:
                content.append(event.content)
            if event.tool_calls:
                tool_calls = event.tool_calls
            await self._send_event(message, event)

        return ChatResponse(content="".join(content), tool_calls=tool_calls)

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    async def _execute_tools(self, message: InboundMessage, calls: list[ToolCall]) -> list[str]:
        """Run tool calls concurrently; results come back in call order."""
        semaphore = asyncio.Semaphore(self.max_parallel_tools)

        async def run_one(call: ToolCall) -> str:
            async with semaphore:
                try:
                    result = await self._execute_tool(call)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.warning("Tool execution failed", tool=call.name, error=str(e))
                    result = f"Error executing tool {call.name}: {e}"
            await self._send_event(message, StreamEvent(type=StreamEventType.TOOL_END, tool=call.name, tool_id=call.id))
            return result

        for call in calls:
            await self._send_event(message, StreamEvent(type=StreamEventType.TOOL_START, tool=call.name, tool_id=call.id))

        return list(await asyncio.gather(*(run_one(call) for call in calls)))

    async def _execute_tool(self, call: ToolCall) -> str:
        """Run a single tool call behind the security policy."""
        logger.info("Executing tool", tool=call.name)

        if not self.tool_filter.is_allowed(call.name):
            logger.warning("Tool call rejected by tool filter", tool=call.name)
            return f"Tool not allowed: {call.name}"

        command = extract_security_command(call)
        if self.security is not None and command:
            action = await self.security.check(call.name, command)
            if action == SecurityAction.BLOCK:
                return f"Action blocked by security policy: {command}"
            if action == SecurityAction.CONFIRM:
                confirmed = await self.security.request_confirmation(call.name, command)
                if not confirmed:
                    return f"Action denied by user: {command}"

        logger.debug("Tool arguments", tool=call.name, arguments=call.arguments)
        result = await self.tools.execute(call.name, call.arguments)
        logger.debug("Tool completed", tool=call.name, result_len=len(result))
        return result

    # ------------------------------------------------------------------
    # Side effects
    # ------------------------------------------------------------------

    async def _persist(self, conversation_id: str, message: InboundMessage, reply: str, first_turn: bool) -> None:
        for stored in (Message(role="user", content=message.content), Message(role="assistant", content=reply)):
            try:
                await self.sessions.save_message(conversation_id, stored)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(
                    "Failed to save message",
                    role=stored.role,
                    conversation_id=conversation_id,
                    error=str(e),
                )

        if first_turn:
            try:
                await self.sessions.update_title(conversation_id, generate_title(message.content))
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("Failed to update title", conversation_id=conversation_id, error=str(e))

    async def _send_event(self, message: InboundMessage, event: StreamEvent) -> None:
        await self._deliver(OutboundMessage(channel=message.channel, chat_id=message.chat_id, stream_event=event))

    async def _deliver(self, outbound: OutboundMessage) -> None:
        if self.outbound is None:
            return
        try:
            await self.outbound.send(outbound)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Outbound delivery failed", channel=outbound.channel, error=str(e))

    def stats(self) -> dict[str, Any]:
        """Runtime snapshot used by the CLI."""
        return {
            "provider": self.llm.name,
            "model": self.llm.model,
            "providers": list(self.providers),
            "tools": [d.name for d in self.tool_filter.filter_definitions(self.tools.list_definitions())],
            "max_iterations": self.max_iterations,
            "rate_limit_available": round(self.rate_limiter.available, 2),
        }

    async def aclose(self) -> None:
        """Release the HTTP pool this agent created, if any."""
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
