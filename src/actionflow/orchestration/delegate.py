"""Delegation of tasks to specialized sub-agents.

Each delegation runs in an isolated sub-conversation: the agent's system
prompt and the task as the only user turn. The parent conversation never
sees the agent's intermediate messages, only the returned content.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

from .action_parser import ActionParser, native_actions, strip_thinking
from .agents import AgentNotFoundError, AgentRegistry, AgentSpec
from .hooks import HookName, RunHooks
from .messages import tool_round_messages
from .prompts import NATIVE_TOOLS_HINT, SUB_AGENT_FOLLOWUP, tool_instructions
from .tools.cache import ToolResultCache
from .tools.invoker import InvokerConfig, ToolInvoker
from .tools.types import ToolContext
from .types import AgentAction, ChatProvider, ConfigurationError, Message, TokenUsage, ToolAction

__all__ = ["AgentDelegate", "DelegationResult"]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class DelegationResult:
    """Outcome of one delegation.

    Attributes:
        agent_name: Agent that handled the task (after resolution).
        requested_name: Name the model asked for.
        content: Agent answer, or an ``Error: ...`` description on failure.
        usage: Token usage of the sub-conversation.
        success: Whether the agent produced an answer.
        tools_called: Tools the agent invoked.
    """

    agent_name: str
    requested_name: str
    content: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    success: bool = True
    tools_called: tuple[str, ...] = ()

    def as_text(self) -> str:
        return f"Agent {self.agent_name}: {self.content}"


class AgentDelegate:
    """Resolves and runs sub-agents on behalf of the controller."""

    def __init__(
        self,
        provider: ChatProvider | None = None,
        *,
        parser: ActionParser | None = None,
        hooks: RunHooks | None = None,
        invoker_config: InvokerConfig | None = None,
        tool_cache: ToolResultCache | None = None,
    ) -> None:
        self._provider = provider
        self._parser = parser or ActionParser()
        self._hooks = hooks or RunHooks()
        self._invoker_config = invoker_config
        self._tool_cache = tool_cache

    def with_hooks(self, hooks: RunHooks | None) -> AgentDelegate:
        if hooks is None or hooks is self._hooks:
            return self
        return AgentDelegate(
            self._provider,
            parser=self._parser,
            hooks=hooks,
            invoker_config=self._invoker_config,
            tool_cache=self._tool_cache,
        )

    async def delegate(self, action: AgentAction, registry: AgentRegistry) -> DelegationResult:
        """Run ``action`` on the best-matching agent in ``registry``.

        Never raises: resolution and execution failures come back as a
        failed DelegationResult whose content describes the error.
        """
        try:
            agent = registry.resolve(action.agent_name)
        except AgentNotFoundError as exc:
            message = f"Error: {exc}. No agents are registered."
            await self._hooks.emit(HookName.AGENT_ERROR, action.agent_name, message)
            return DelegationResult(
                agent_name=action.agent_name,
                requested_name=action.agent_name,
                content=message,
                success=False,
            )

        LOGGER.debug("Delegating to agent %s (requested %s)", agent.name, action.agent_name)
        await self._hooks.emit(HookName.AGENT_START, agent.name, action.task)
        try:
            content, usage, tools_called = await self._run_agent(agent, action)
        except Exception as exc:
            LOGGER.warning("Agent %s failed: %s", agent.name, exc, exc_info=True)
            await self._hooks.emit(HookName.AGENT_ERROR, agent.name, str(exc))
            return DelegationResult(
                agent_name=agent.name,
                requested_name=action.agent_name,
                content=f"Error: Agent '{agent.name}' failed: {exc}",
                success=False,
            )

        await self._hooks.emit(HookName.AGENT_COMPLETE, agent.name, content)
        return DelegationResult(
            agent_name=agent.name,
            requested_name=action.agent_name,
            content=content,
            usage=usage,
            success=True,
            tools_called=tools_called,
        )

    async def _run_agent(self, agent: AgentSpec, action: AgentAction) -> tuple[str, TokenUsage, tuple[str, ...]]:
        provider = agent.provider or self._provider
        if provider is None:
            raise ConfigurationError(f"Agent '{agent.name}' has no provider configured")

        native = provider.capabilities.native_tools
        system_prompt = agent.prompt()
        tool_payload = None
        if agent.has_tools:
            if native:
                system_prompt = f"{system_prompt}\n\n{NATIVE_TOOLS_HINT}"
                tool_payload = agent.tools.get_openai_tools()  # type: ignore[union-attr]
            else:
                system_prompt = f"{system_prompt}\n\n{tool_instructions(agent.tools.list_tools())}"  # type: ignore[union-attr]

        messages: list[Message] = [Message.system(system_prompt), Message.user(action.task)]
        response = await provider.chat(messages, agent.config, tool_payload)
        usage = response.usage or TokenUsage()

        tool_actions = self._tool_actions(agent, response.tool_calls, response.content)
        if not tool_actions:
            return strip_thinking(response.content), usage, ()

        invoker = ToolInvoker(
            agent.tools,  # type: ignore[arg-type]
            cache=self._tool_cache,
            config=self._invoker_config,
            hooks=self._hooks,
        )
        outcomes = [
            await invoker.invoke(tool_action, ToolContext(call_id=tool_action.call_id, run_id=action.call_id))
            for tool_action in tool_actions
        ]
        messages.extend(tool_round_messages(response.content, tool_actions, outcomes, native=native))
        messages.append(Message.user(SUB_AGENT_FOLLOWUP))

        followup = await provider.chat(messages, agent.config, tool_payload)
        usage = usage + (followup.usage or TokenUsage())
        return strip_thinking(followup.content), usage, tuple(tool_action.name for tool_action in tool_actions)

    def _tool_actions(self, agent: AgentSpec, tool_calls: Sequence, content: str) -> list[ToolAction]:
        if not agent.has_tools:
            return []
        actions = native_actions(tool_calls) or self._parser.parse(content)
        return [item for item in actions if isinstance(item, ToolAction)]
