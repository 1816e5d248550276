"""Sub-agent specifications and the agent registry."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable, Iterator

from .types import ChatConfig

if TYPE_CHECKING:  # pragma: no cover - import cycle guard
    from .tools.registry import ToolRegistry
    from .types import ChatProvider

__all__ = [
    "AgentNotFoundError",
    "AgentRegistry",
    "AgentSpec",
    "DuplicateAgentError",
]

LOGGER = logging.getLogger(__name__)


class DuplicateAgentError(Exception):
    """Raised when registering an agent whose name is already taken."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Agent '{name}' is already registered")


class AgentNotFoundError(Exception):
    """Raised when no agent can be resolved for a delegation request."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Agent '{name}' not found")


@dataclass(slots=True)
class AgentSpec:
    """A specialized sub-agent the controller can delegate to.

    Attributes:
        name: Unique agent name used in ``<agent_call>`` blocks.
        description: Role description advertised to the orchestrating model.
        system_prompt: Agent system prompt; generated from the role when empty.
        provider: Model backend for the agent; the delegate's default when None.
        tools: Tools available inside the agent's sub-conversation.
        config: Chat options for the agent's model calls.
        capabilities: Free-form capability labels advertised to the orchestrator.
    """

    name: str
    description: str = ""
    system_prompt: str = ""
    provider: ChatProvider | None = None
    tools: ToolRegistry | None = None
    config: ChatConfig | None = None
    capabilities: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("Agent name is required")
        self.capabilities = tuple(self.capabilities)

    @property
    def has_tools(self) -> bool:
        return self.tools is not None and len(self.tools.list_names()) > 0

    def prompt(self) -> str:
        """System prompt for the agent's sub-conversation."""
        if self.system_prompt:
            return self.system_prompt
        prompt = f"You are a {self.description or self.name}."
        if self.capabilities:
            prompt += f"\n\nYour capabilities include: {', '.join(self.capabilities)}."
        if self.has_tools:
            prompt += f"\n\nYou have access to the following tools: {', '.join(self.tools.list_names())}."  # type: ignore[union-attr]
        return prompt


class AgentRegistry:
    """Explicit registry of sub-agents, constructed per application."""

    def __init__(self, agents: Iterable[AgentSpec] | None = None) -> None:
        self._agents: dict[str, AgentSpec] = {}
        for agent in agents or ():
            self.register(agent)

    def register(self, agent: AgentSpec, *, allow_override: bool = False) -> AgentSpec:
        if agent.name in self._agents and not allow_override:
            raise DuplicateAgentError(agent.name)
        self._agents[agent.name] = agent
        LOGGER.debug("Registered agent: %s", agent.name)
        return agent

    def unregister(self, name: str) -> bool:
        return self._agents.pop(name, None) is not None

    def get(self, name: str) -> AgentSpec | None:
        return self._agents.get(name)

    def resolve(self, name: str) -> AgentSpec:
        """Resolve a requested agent name leniently.

        Order: exact match, case-insensitive match, case-insensitive
        substring match in either direction, then the first registered
        agent. The final fallback misroutes rather than fails and is logged
        at warning level.

        Raises:
            AgentNotFoundError: Only when the registry is empty.
        """
        agent = self._agents.get(name)
        if agent is not None:
            return agent
        if not self._agents:
            raise AgentNotFoundError(name)

        requested = (name or "").strip().lower()
        if requested:
            for candidate in self._agents.values():
                if candidate.name.lower() == requested:
                    return candidate
            for candidate in self._agents.values():
                if requested in candidate.name.lower():
                    LOGGER.debug("Resolved agent %r to %r by substring", name, candidate.name)
                    return candidate
            for candidate in self._agents.values():
                if candidate.name.lower() in requested:
                    LOGGER.debug("Resolved agent %r to %r by substring", name, candidate.name)
                    return candidate

        fallback = next(iter(self._agents.values()))
        LOGGER.warning("Agent %r not found; falling back to first registered agent %r", name, fallback.name)
        return fallback

    def list_agents(self) -> list[AgentSpec]:
        return list(self._agents.values())

    def names(self) -> list[str]:
        return list(self._agents)

    def __len__(self) -> int:
        return len(self._agents)

    def __contains__(self, name: object) -> bool:
        return name in self._agents

    def __iter__(self) -> Iterator[AgentSpec]:
        return iter(list(self._agents.values()))
