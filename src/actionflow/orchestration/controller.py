"""Execution Controller: drives a run through one of the execution topologies.

This module provides the ExecutionController class, which wires together the
history store, the action parser, the tool invoker and the agent delegate
into a bounded multi-round conversation. Three topologies are supported:

* single-shot: one model call, no action interpretation;
* tool-loop: model rounds interleaved with tool invocations;
* delegated: sub-agent delegation followed by a synthesis round.

Every run ends in a RunResult; ``run`` never raises once construction
succeeded.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Sequence

from ..utils.logging import bind_run
from .action_parser import ActionParser, native_actions, strip_thinking
from .agents import AgentRegistry
from .delegate import AgentDelegate, DelegationResult
from .history import HistoryStore
from .hooks import HookName, RunHooks
from .intent import is_conversational
from .messages import tool_round_messages, with_system_suffix
from .prompts import (
    DELEGATION_NUDGE,
    ERROR_FINALIZATION_INSTRUCTION,
    FINAL_ANSWER_INSTRUCTION,
    FINAL_RESPONSE_INSTRUCTION,
    delegation_instructions,
    synthesis_prompt,
    tool_instructions,
)
from .response_cache import ResponseCache
from .tools.invoker import ToolInvoker, ToolOutcome
from .tools.registry import ToolRegistry
from .tools.selection import select_tools
from .tools.types import ToolContext, ToolSpec
from .types import (
    ActionRequest,
    AgentAction,
    ChatConfig,
    ChatProvider,
    ChatResponse,
    ConfigurationError,
    ExecutionBudget,
    ExecutionMode,
    Message,
    RunError,
    RunResult,
    TerminationReason,
    TokenUsage,
    ToolAction,
)

__all__ = [
    "ControllerConfig",
    "ExecutionController",
    "IntentClassifier",
]

LOGGER = logging.getLogger(__name__)

# Returns True when a message is small talk that needs no delegation.
IntentClassifier = Callable[[str], bool]

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."


# -----------------------------------------------------------------------------
# Controller Configuration
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ControllerConfig:
    """Configuration for the execution controller.

    Attributes:
        mode: Execution mode used when ``run`` is called without one.
        chat: Options passed through to every model call.
        budget: Budget override; the per-mode default when None.
        system_prompt: System prompt seeded into an empty history.
        max_history_messages: Window size for histories the controller creates.
        parallel_tools: Dispatch a round's actions concurrently.
        strip_thinking: Remove ``<think>`` blocks from final answers.
        stream_chunk_size: Characters per chunk when simulating a stream.
        max_tools_per_prompt: Advertise only this many tools per run, picked
            by relevance to the user message; every tool when None.
    """

    mode: str = ExecutionMode.TOOL_LOOP
    chat: ChatConfig = field(default_factory=ChatConfig)
    budget: ExecutionBudget | None = None
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    max_history_messages: int = 20
    parallel_tools: bool = False
    strip_thinking: bool = True
    stream_chunk_size: int = 20
    max_tools_per_prompt: int | None = None

    def __post_init__(self) -> None:
        if self.mode not in ExecutionMode.ALL:
            raise ConfigurationError(f"Unknown execution mode: {self.mode!r}")
        if self.stream_chunk_size < 1:
            raise ConfigurationError("stream_chunk_size must be at least 1")
        if self.max_tools_per_prompt is not None and self.max_tools_per_prompt < 1:
            raise ConfigurationError("max_tools_per_prompt must be at least 1")


# -----------------------------------------------------------------------------
# Per-run State
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class _RunState:
    """Mutable bookkeeping for one run; never shared between runs."""

    run_id: str
    mode: str
    budget: ExecutionBudget
    history: HistoryStore
    cancel_event: asyncio.Event | None = None
    usage: TokenUsage = field(default_factory=TokenUsage)
    rounds: list[TokenUsage] = field(default_factory=list)
    tools_called: list[str] = field(default_factory=list)
    agents_called: list[str] = field(default_factory=list)
    seen: set[str] = field(default_factory=set)
    dispatched: int = 0
    consecutive_errors: int = 0
    last_content: str = ""

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    @property
    def error_budget_spent(self) -> bool:
        return self.consecutive_errors >= self.budget.max_consecutive_errors

    @property
    def call_budget_spent(self) -> bool:
        return self.dispatched >= self.budget.max_tool_calls_total

    def record_failure(self, failed: bool) -> None:
        self.consecutive_errors = self.consecutive_errors + 1 if failed else 0


# -----------------------------------------------------------------------------
# Execution Controller
# -----------------------------------------------------------------------------


class ExecutionController:
    """Top-level state machine for one conversation.

    Example:
        >>> controller = ExecutionController(provider, tools=registry)
        >>> result = await controller.run("Calculate 5+3")
        >>> print(result.content, result.termination_reason)
    """

    def __init__(
        self,
        provider: ChatProvider | None,
        *,
        tools: ToolRegistry | None = None,
        agents: AgentRegistry | None = None,
        invoker: ToolInvoker | None = None,
        config: ControllerConfig | None = None,
        hooks: RunHooks | None = None,
        response_cache: ResponseCache | None = None,
        intent: IntentClassifier | None = None,
        parser: ActionParser | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            provider: Model backend used for every controller round.
            tools: Tools available to the model. Defaults to the invoker's registry.
            agents: Sub-agents available in delegated mode.
            invoker: Tool invoker to reuse (and with it, its result cache).
            config: Optional controller configuration.
            hooks: Observers notified of run, tool, agent and stream events.
            response_cache: Optional cross-run cache of final answers.
            intent: Classifier deciding whether a message is small talk.
            parser: Action parser; the default cascade when None.

        Raises:
            ConfigurationError: If no provider is given.
        """
        if provider is None:
            raise ConfigurationError("ExecutionController requires a chat provider")
        self._provider = provider
        self._config = config or ControllerConfig()
        self._hooks = hooks or RunHooks()
        registry = tools if tools is not None else (invoker.registry if invoker is not None else ToolRegistry())
        if invoker is None:
            invoker = ToolInvoker(registry)
        self._tools = registry
        # Controller hooks fire first, then any hooks the invoker already had.
        self._invoker = invoker.with_hooks(hooks.merged(invoker.hooks)) if hooks is not None else invoker
        self._agents = agents or AgentRegistry()
        self._parser = parser or ActionParser()
        self._delegate = AgentDelegate(
            provider,
            parser=self._parser,
            hooks=self._hooks,
            invoker_config=invoker.config,
            tool_cache=invoker.cache,
        )
        self._response_cache = response_cache
        self._intent = intent or is_conversational

    @property
    def provider(self) -> ChatProvider:
        """The model provider."""
        return self._provider

    @property
    def config(self) -> ControllerConfig:
        """The controller configuration."""
        return self._config

    @property
    def tools(self) -> ToolRegistry:
        """The tool registry."""
        return self._tools

    @property
    def agents(self) -> AgentRegistry:
        """The agent registry."""
        return self._agents

    @property
    def invoker(self) -> ToolInvoker:
        """The tool invoker."""
        return self._invoker

    @property
    def response_cache(self) -> ResponseCache | None:
        """The response cache, if any."""
        return self._response_cache

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def run(
        self,
        message: str | Message,
        *,
        mode: str | None = None,
        budget: ExecutionBudget | None = None,
        history: HistoryStore | None = None,
        cancel_event: asyncio.Event | None = None,
        system_prompt: str | None = None,
    ) -> RunResult:
        """Execute one run and return its result.

        Args:
            message: User input, as text or a (possibly multipart) Message.
            mode: Execution mode; the configured default when None.
            budget: Budget for this run; the per-mode default when None.
            history: History to continue; a fresh store when None.
            cancel_event: Set to stop the run at the next checkpoint.
            system_prompt: Replaces the history's system message for this run.

        Returns:
            RunResult with the final content and termination reason. Failures
            are reported through ``RunResult.error``, never raised.
        """
        run_id = uuid.uuid4().hex
        with bind_run(run_id):
            return await self._execute(run_id, message, mode, budget, history, cancel_event, system_prompt)

    async def _execute(
        self,
        run_id: str,
        message: str | Message,
        mode: str | None,
        budget: ExecutionBudget | None,
        history: HistoryStore | None,
        cancel_event: asyncio.Event | None,
        system_prompt: str | None,
    ) -> RunResult:
        resolved_mode = mode or self._config.mode
        user_message = message if isinstance(message, Message) else Message.user(message)
        store = history if history is not None else HistoryStore(max_messages=self._config.max_history_messages)
        state = _RunState(
            run_id=run_id,
            mode=resolved_mode,
            budget=ExecutionBudget.for_mode(resolved_mode),
            history=store,
            cancel_event=cancel_event,
        )

        LOGGER.debug("Starting run %s in %s mode", run_id, resolved_mode)
        await self._hooks.emit(HookName.START, user_message.text)

        try:
            state.budget = self._resolve_budget(resolved_mode, budget)
            self._prepare_history(store, user_message, system_prompt)
            result = self._cached_result(state, user_message)
            if result is None:
                result = await self._run_mode(state)
                self._store_cached(user_message, result)
        except Exception as exc:
            LOGGER.exception("Run %s failed with exception", run_id)
            await self._hooks.emit(HookName.ERROR, exc, "run")
            return RunResult(
                content="",
                termination_reason=TerminationReason.ERROR,
                usage=state.usage,
                rounds=tuple(state.rounds),
                tools_called=tuple(state.tools_called),
                agents_called=tuple(state.agents_called),
                mode=resolved_mode,
                error=RunError(
                    message=str(exc) or type(exc).__name__,
                    code="EXECUTION_ERROR",
                    details={"type": type(exc).__name__, "run_id": run_id},
                ),
            )

        LOGGER.debug(
            "Run %s finished: %s after %d model call(s)",
            run_id,
            result.termination_reason,
            len(result.rounds),
        )
        await self._hooks.emit(HookName.COMPLETE, result)
        return result

    async def stream(
        self,
        message: str | Message,
        *,
        mode: str | None = None,
        budget: ExecutionBudget | None = None,
        history: HistoryStore | None = None,
        cancel_event: asyncio.Event | None = None,
        system_prompt: str | None = None,
    ) -> AsyncIterator[str]:
        """Yield the answer incrementally.

        Single-shot runs on streaming providers forward the provider's
        chunks. Every other combination runs to completion first and then
        replays the content in ``stream_chunk_size`` pieces.
        """
        resolved_mode = mode or self._config.mode
        if resolved_mode == ExecutionMode.SINGLE_SHOT and self._provider.capabilities.streaming:
            async for chunk in self._stream_native(message, history, cancel_event, system_prompt):
                yield chunk
            return

        result = await self.run(
            message,
            mode=resolved_mode,
            budget=budget,
            history=history,
            cancel_event=cancel_event,
            system_prompt=system_prompt,
        )
        size = self._config.stream_chunk_size
        for start in range(0, len(result.content), size):
            chunk = result.content[start : start + size]
            await self._hooks.emit(HookName.STREAM_CHUNK, chunk)
            yield chunk
        await self._hooks.emit(HookName.STREAM_COMPLETE, result.content)

    async def _stream_native(
        self,
        message: str | Message,
        history: HistoryStore | None,
        cancel_event: asyncio.Event | None,
        system_prompt: str | None,
    ) -> AsyncIterator[str]:
        user_message = message if isinstance(message, Message) else Message.user(message)
        store = history if history is not None else HistoryStore(max_messages=self._config.max_history_messages)
        self._prepare_history(store, user_message, system_prompt)
        await self._hooks.emit(HookName.START, user_message.text)

        chunks: list[str] = []
        try:
            async for chunk in self._provider.stream(store.messages(), self._config.chat):
                if cancel_event is not None and cancel_event.is_set():
                    LOGGER.debug("Stream cancelled after %d chunk(s)", len(chunks))
                    break
                if not chunk:
                    continue
                chunks.append(chunk)
                await self._hooks.emit(HookName.STREAM_CHUNK, chunk)
                yield chunk
        except Exception as exc:
            LOGGER.exception("Streaming from %s failed", self._provider.name)
            await self._hooks.emit(HookName.ERROR, exc, "stream")
            return

        content = "".join(chunks)
        if content:
            store.add(Message.assistant(content))
        await self._hooks.emit(HookName.STREAM_COMPLETE, content)
        await self._hooks.emit(
            HookName.COMPLETE,
            RunResult(content=content, termination_reason=TerminationReason.SINGLE_SHOT, mode=ExecutionMode.SINGLE_SHOT),
        )

    # ------------------------------------------------------------------
    # Setup helpers
    # ------------------------------------------------------------------

    def _resolve_budget(self, mode: str, budget: ExecutionBudget | None) -> ExecutionBudget:
        if mode not in ExecutionMode.ALL:
            raise ValueError(f"Unknown execution mode: {mode!r}")
        return budget or self._config.budget or ExecutionBudget.for_mode(mode)

    def _prepare_history(self, history: HistoryStore, message: Message, system_prompt: str | None) -> None:
        if system_prompt is not None:
            history.set_system(system_prompt)
        elif history.system_message is None and self._config.system_prompt:
            history.set_system(self._config.system_prompt)
        history.add(message)

    def _cached_result(self, state: _RunState, message: Message) -> RunResult | None:
        if self._response_cache is None or not message.text:
            return None
        content = self._response_cache.get(message.text)
        if content is None:
            return None
        LOGGER.debug("Run %s answered from response cache", state.run_id)
        state.history.add(Message.assistant(content))
        return self._result(state, content, TerminationReason.CACHED)

    def _store_cached(self, message: Message, result: RunResult) -> None:
        if self._response_cache is None or not message.text or not result.content:
            return
        if result.termination_reason in (TerminationReason.ERROR, TerminationReason.CANCELLED):
            return
        self._response_cache.set(message.text, result.content)

    # ------------------------------------------------------------------
    # Topologies
    # ------------------------------------------------------------------

    async def _run_mode(self, state: _RunState) -> RunResult:
        if state.mode == ExecutionMode.SINGLE_SHOT:
            return await self._run_single_shot(state)
        if state.mode == ExecutionMode.DELEGATED:
            return await self._run_delegated(state)
        return await self._run_tool_loop(state)

    async def _run_single_shot(self, state: _RunState) -> RunResult:
        if state.cancelled:
            return self._result(state, "", TerminationReason.CANCELLED)
        response = await self._chat(state, state.history.messages())
        state.history.add(Message.assistant(response.content))
        return self._result(state, response.content, TerminationReason.SINGLE_SHOT)

    async def _run_tool_loop(self, state: _RunState) -> RunResult:
        native = self._provider.capabilities.native_tools
        specs = self._active_tools(state)
        tool_payload = self._openai_tools(specs) if native and specs else None
        suffix = tool_instructions(specs) if specs and not native else ""
        history = state.history

        for iteration in range(1, state.budget.max_iterations + 1):
            if state.cancelled:
                return self._cancelled(state)
            if state.error_budget_spent:
                return await self._finalize(state, ERROR_FINALIZATION_INSTRUCTION, TerminationReason.MAX_CONSECUTIVE_ERRORS)

            LOGGER.debug("Run %s tool-loop round %d", state.run_id, iteration)
            response = await self._chat(state, with_system_suffix(history.messages(), suffix), tool_payload)
            actions = self._tool_actions(response)
            if not actions:
                history.add(Message.assistant(response.content))
                return self._result(state, response.content, TerminationReason.NO_FURTHER_ACTIONS)

            fresh = self._filter_seen(state, actions)
            if not fresh:
                LOGGER.debug("Run %s: every requested action repeats an earlier one", state.run_id)
                return await self._finalize(state, FINAL_ANSWER_INSTRUCTION, TerminationReason.DUPLICATE_ACTIONS)

            if response.content and not self._parser.parse(response.content):
                state.last_content = response.content
            executed, outcomes = await self._invoke_tools(state, fresh)
            if state.cancelled:
                return self._cancelled(state)
            if executed:
                history.extend(tool_round_messages(response.content, executed, outcomes, native=native))

            if state.error_budget_spent:
                return await self._finalize(state, ERROR_FINALIZATION_INSTRUCTION, TerminationReason.MAX_CONSECUTIVE_ERRORS)
            if state.call_budget_spent:
                LOGGER.debug("Run %s reached the tool-call cap (%d)", state.run_id, state.budget.max_tool_calls_total)
                if state.last_content:
                    return self._result(state, state.last_content, TerminationReason.MAX_TOOL_CALLS)
                return await self._finalize(state, FINAL_RESPONSE_INSTRUCTION, TerminationReason.MAX_TOOL_CALLS)

        LOGGER.warning("Run %s reached max iterations (%d)", state.run_id, state.budget.max_iterations)
        return await self._finalize(state, FINAL_RESPONSE_INSTRUCTION, TerminationReason.MAX_ITERATIONS)

    async def _run_delegated(self, state: _RunState) -> RunResult:
        native = self._provider.capabilities.native_tools
        specs = self._active_tools(state)
        agents = self._agents.list_agents()
        tool_payload = self._openai_tools(specs) if native and specs else None
        instructions = delegation_instructions(agents, specs)
        history = state.history
        user_text = self._last_user_text(history)
        pending: list[Message] = []
        nudged = False

        for iteration in range(1, state.budget.max_iterations + 1):
            if state.cancelled:
                return self._cancelled(state)
            if state.error_budget_spent:
                return await self._finalize(state, ERROR_FINALIZATION_INSTRUCTION, TerminationReason.MAX_CONSECUTIVE_ERRORS)

            LOGGER.debug("Run %s delegated round %d", state.run_id, iteration)
            messages = with_system_suffix(history.messages(), instructions) + pending
            response = await self._chat(state, messages, tool_payload)
            actions = self._extract_actions(response)

            if not actions:
                if not agents:
                    history.add(Message.assistant(response.content))
                    return self._result(state, response.content, TerminationReason.NO_FURTHER_ACTIONS)
                if not nudged and not self._intent(user_text):
                    nudged = True
                    LOGGER.debug("Run %s: nudging toward delegation", state.run_id)
                    pending = [Message.assistant(response.content), Message.user(DELEGATION_NUDGE)]
                    continue
                history.add(Message.assistant(response.content))
                return self._result(state, response.content, TerminationReason.DIRECT_ANSWER)

            fresh = self._filter_seen(state, actions)
            if not fresh:
                return await self._finalize(state, FINAL_ANSWER_INSTRUCTION, TerminationReason.DUPLICATE_ACTIONS)

            results = await self._dispatch(state, fresh)
            if state.cancelled:
                return self._cancelled(state)
            if state.error_budget_spent:
                return await self._finalize(state, ERROR_FINALIZATION_INSTRUCTION, TerminationReason.MAX_CONSECUTIVE_ERRORS)
            if results:
                return await self._synthesize(state, results)

        LOGGER.warning("Run %s reached max iterations (%d)", state.run_id, state.budget.max_iterations)
        return await self._finalize(state, FINAL_RESPONSE_INSTRUCTION, TerminationReason.MAX_ITERATIONS)

    def _active_tools(self, state: _RunState) -> list[ToolSpec]:
        """Tools advertised for this run, narrowed to the most relevant ones when capped."""
        specs = self._tools.list_tools()
        return select_tools(self._last_user_text(state.history), specs, self._config.max_tools_per_prompt)

    def _openai_tools(self, specs: Sequence[ToolSpec]) -> list[dict[str, Any]]:
        return self._tools.get_openai_tools(filter_names=[spec.name for spec in specs])

    # ------------------------------------------------------------------
    # Rounds
    # ------------------------------------------------------------------

    async def _chat(
        self,
        state: _RunState,
        messages: Sequence[Message],
        tools: Sequence[Mapping[str, Any]] | None = None,
    ) -> ChatResponse:
        response = await self._provider.chat(messages, self._config.chat, tools)
        usage = response.usage or TokenUsage()
        state.rounds.append(usage)
        state.usage = state.usage + usage
        return response

    async def _finalize(self, state: _RunState, instruction: str, reason: str) -> RunResult:
        """Closing round without tools, steered by ``instruction``."""
        LOGGER.debug("Run %s finalizing (%s)", state.run_id, reason)
        messages = state.history.messages() + [Message.user(instruction)]
        response = await self._chat(state, messages)
        content = response.content or state.last_content
        state.history.add(Message.assistant(content))
        return self._result(state, content, reason)

    async def _synthesize(self, state: _RunState, results: Sequence[str]) -> RunResult:
        LOGGER.debug("Run %s synthesizing %d result(s)", state.run_id, len(results))
        messages = state.history.messages() + [Message.user(synthesis_prompt(results))]
        response = await self._chat(state, messages)
        content = response.content or "\n\n".join(results)
        state.history.add(Message.assistant(content))
        return self._result(state, content, TerminationReason.SYNTHESIS)

    def _extract_actions(self, response: ChatResponse) -> list[ActionRequest]:
        actions = native_actions(response.tool_calls)
        if actions:
            return actions
        return self._parser.parse(response.content)

    def _tool_actions(self, response: ChatResponse) -> list[ToolAction]:
        actions = self._extract_actions(response)
        tool_actions = [action for action in actions if isinstance(action, ToolAction)]
        if len(tool_actions) != len(actions):
            LOGGER.debug("Ignoring %d agent action(s) outside delegated mode", len(actions) - len(tool_actions))
        return tool_actions

    def _filter_seen(self, state: _RunState, actions: Sequence[ActionRequest]) -> list[ActionRequest]:
        fresh: list[Any] = []
        for action in actions:
            key = action.dedup_key
            if key in state.seen:
                LOGGER.debug("Skipping duplicate action %s", key)
                continue
            state.seen.add(key)
            fresh.append(action)
        return fresh

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _invoke_tools(
        self,
        state: _RunState,
        actions: Sequence[ToolAction],
    ) -> tuple[list[ToolAction], list[ToolOutcome]]:
        """Invoke tool actions within the remaining budget.

        Returns the actions actually executed and their outcomes, in order.
        """
        allowed = self._within_budget(state, actions)
        if self._config.parallel_tools:
            if state.cancelled or state.error_budget_spent:
                return [], []
            outcomes = list(await asyncio.gather(*(self._invoke_tool(state, action) for action in allowed)))
            for outcome in outcomes:
                state.record_failure(not outcome.ok)
            return list(allowed), outcomes

        executed: list[ToolAction] = []
        outcomes = []
        for action in allowed:
            if state.cancelled or state.error_budget_spent:
                break
            outcome = await self._invoke_tool(state, action)
            state.record_failure(not outcome.ok)
            executed.append(action)
            outcomes.append(outcome)
        return executed, outcomes

    async def _invoke_tool(self, state: _RunState, action: ToolAction) -> ToolOutcome:
        state.dispatched += 1
        state.tools_called.append(action.name)
        return await self._invoker.invoke(action, ToolContext(call_id=action.call_id, run_id=state.run_id))

    async def _dispatch(self, state: _RunState, actions: Sequence[ActionRequest]) -> list[str]:
        """Run a delegated round's agent and tool actions, collecting results as text."""
        allowed = self._within_budget(state, actions)
        if self._config.parallel_tools:
            if state.cancelled or state.error_budget_spent:
                return []
            pairs = list(await asyncio.gather(*(self._dispatch_one(state, action) for action in allowed)))
            for _, failed in pairs:
                state.record_failure(failed)
            return [text for text, _ in pairs]

        results: list[str] = []
        for action in allowed:
            if state.cancelled or state.error_budget_spent:
                break
            text, failed = await self._dispatch_one(state, action)
            state.record_failure(failed)
            results.append(text)
        return results

    async def _dispatch_one(self, state: _RunState, action: ActionRequest) -> tuple[str, bool]:
        if isinstance(action, AgentAction):
            state.dispatched += 1
            result: DelegationResult = await self._delegate.delegate(action, self._agents)
            state.agents_called.append(result.agent_name)
            state.usage = state.usage + result.usage
            return result.as_text(), not result.success
        outcome = await self._invoke_tool(state, action)
        return f"Tool {outcome.name}: {outcome.content}", not outcome.ok

    def _within_budget(self, state: _RunState, actions: Sequence[Any]) -> list[Any]:
        remaining = max(0, state.budget.max_tool_calls_total - state.dispatched)
        if len(actions) > remaining:
            LOGGER.debug("Dropping %d action(s) over the tool-call cap", len(actions) - remaining)
        return list(actions[:remaining])

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def _cancelled(self, state: _RunState) -> RunResult:
        LOGGER.debug("Run %s cancelled", state.run_id)
        return self._result(state, state.last_content, TerminationReason.CANCELLED)

    def _result(self, state: _RunState, content: str, reason: str) -> RunResult:
        if self._config.strip_thinking:
            content = strip_thinking(content)
        return RunResult(
            content=content or "",
            termination_reason=reason,
            usage=state.usage,
            rounds=tuple(state.rounds),
            tools_called=tuple(state.tools_called),
            agents_called=tuple(state.agents_called),
            mode=state.mode,
        )

    @staticmethod
    def _last_user_text(history: HistoryStore) -> str:
        for message in reversed(history.messages()):
            if message.role == "user":
                return message.text
        return ""
