"""Prompt templates injected by the controller and the agent delegate."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Mapping, Sequence
from xml.sax.saxutils import quoteattr

if TYPE_CHECKING:  # pragma: no cover - import cycle guard
    from .agents import AgentSpec
    from .tools.types import ToolSpec

__all__ = [
    "DELEGATION_NUDGE",
    "ERROR_FINALIZATION_INSTRUCTION",
    "FINAL_ANSWER_INSTRUCTION",
    "FINAL_RESPONSE_INSTRUCTION",
    "NATIVE_TOOLS_HINT",
    "SUB_AGENT_FOLLOWUP",
    "delegation_instructions",
    "format_agents_xml",
    "format_tools_xml",
    "synthesis_prompt",
    "tool_instructions",
]

FINAL_ANSWER_INSTRUCTION = "Provide your final answer now."
FINAL_RESPONSE_INSTRUCTION = "Provide your final response."
ERROR_FINALIZATION_INSTRUCTION = (
    "Multiple tool errors occurred. Stop using tools and provide your final answer based on what you know."
)
DELEGATION_NUDGE = (
    "HINT: You have specialized agents available. If the request requires specialized processing, "
    "delegate it with an <agent_call> block. Otherwise answer directly."
)
SUB_AGENT_FOLLOWUP = "Based on the tool results above, provide a complete answer."
NATIVE_TOOLS_HINT = "Use tools when relevant."


def _schema_params(parameters: Mapping[str, Any]) -> list[str]:
    properties = parameters.get("properties") if isinstance(parameters, Mapping) else None
    if not isinstance(properties, Mapping):
        return []
    required = set(parameters.get("required") or ())
    lines: list[str] = []
    for name, schema in properties.items():
        schema = schema if isinstance(schema, Mapping) else {}
        param_type = schema.get("type", "any")
        if isinstance(param_type, (list, tuple)):
            param_type = "|".join(str(item) for item in param_type)
        attrs = [
            f"name={quoteattr(str(name))}",
            f"type={quoteattr(str(param_type))}",
            f"required={quoteattr('true' if name in required else 'false')}",
        ]
        description = schema.get("description")
        if description:
            attrs.append(f"description={quoteattr(str(description))}")
        lines.append(f"    <param {' '.join(attrs)}/>")
    return lines


def format_tools_xml(tools: Sequence[ToolSpec]) -> str:
    """Render tool specs as an ``<tools>`` XML catalogue."""
    lines = ["<tools>"]
    for spec in tools:
        header = f"  <tool name={quoteattr(spec.name)} description={quoteattr(spec.description)}"
        params = _schema_params(spec.parameters)
        if not params:
            lines.append(header + "/>")
            continue
        lines.append(header + ">")
        lines.extend(params)
        lines.append("  </tool>")
    lines.append("</tools>")
    return "\n".join(lines)


def tool_instructions(tools: Sequence[ToolSpec]) -> str:
    """Textual tool-usage instructions for backends without native tool calling."""
    return f"""You have access to the following tools:

{format_tools_xml(tools)}

To use a tool, respond with:
<tool_call>
<name>tool_name</name>
<arguments>
{{"param1": "value1", "param2": "value2"}}
</arguments>
</tool_call>

You can make multiple tool calls by using multiple <tool_call> blocks.
After receiving tool results, synthesize them into a final response for the user."""


def format_agents_xml(agents: Sequence[AgentSpec]) -> str:
    """Render agents as an ``<available_agents>`` XML block."""
    lines = ["<available_agents>"]
    for agent in agents:
        capabilities = ", ".join(agent.capabilities) or "general tasks"
        lines.append(
            f"  <agent name={quoteattr(agent.name)} role={quoteattr(agent.description or agent.name)} "
            f"capabilities={quoteattr(capabilities)}/>"
        )
    lines.append("</available_agents>")
    return "\n".join(lines)


def delegation_instructions(agents: Sequence[AgentSpec], tools: Sequence[ToolSpec] = ()) -> str:
    """Instructions describing available sub-agents and tools for delegated mode."""
    sections: list[str] = []
    if agents:
        sections.append(
            f"""You are the main orchestrator coordinating specialized agents.

{format_agents_xml(agents)}

To delegate a task to an agent, use this format:
<agent_call>
<name>agent_name</name>
<task>Task description for the agent</task>
</agent_call>

You can make multiple agent calls. Each agent will execute its assigned task and return results.
After receiving all agent results, synthesize them into a final comprehensive answer."""
        )
    if tools:
        listing = "\n".join(f"- {spec.name}: {spec.description}" for spec in tools)
        sections.append(
            "You also have direct access to these tools for tasks you handle yourself:\n"
            f"{listing}\n\n"
            "Use this format for direct tool usage:\n"
            "<tool_call>\n<name>tool_name</name>\n<arguments>{\"param\": \"value\"}</arguments>\n</tool_call>"
        )
    if agents:
        sections.append(
            "Analyze the user's request and delegate to the most appropriate agent(s). "
            "Answer directly only when no agent is relevant."
        )
    return "\n\n".join(sections)


def synthesis_prompt(results: Sequence[str]) -> str:
    """Prompt asking for one final answer from collected agent and tool results."""
    joined = "\n\n".join(results)
    return (
        "The agents have completed their tasks. Here are the results:\n\n"
        f"{joined}\n\n"
        "Based on these results, provide a final answer to the user. Do NOT delegate again."
    )
