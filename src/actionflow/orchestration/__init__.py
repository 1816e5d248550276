"""Action interpretation and execution control.

Example:
    from actionflow.orchestration import ExecutionController, ToolRegistry, ToolSpec

    registry = ToolRegistry()

    @registry.tool(name="calculator", description="Add two numbers")
    def calculator(args):
        return args["a"] + args["b"]

    controller = ExecutionController(provider, tools=registry)
    result = await controller.run("Calculate 5+3")
"""

# Core types
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
    ProviderCapabilities,
    RunError,
    RunResult,
    TerminationReason,
    TokenUsage,
    ToolAction,
    normalize_arguments,
)

# Conversation state
from .history import HistoryStore

# Action parsing
from .action_parser import (
    ActionParser,
    decode_action,
    has_action_markup,
    native_actions,
    parse_actions,
    strip_thinking,
)

# Hooks
from .hooks import HookEvent, HookName, InMemoryHookSink, RunHooks

# Tool system
from .tools import (
    FunctionTool,
    InMemoryToolCache,
    InvokerConfig,
    RetryPolicy,
    Tool,
    ToolContext,
    ToolInvoker,
    ToolOutcome,
    ToolPolicy,
    ToolRegistry,
    ToolResultCache,
    ToolSpec,
)

# Delegation
from .agents import AgentNotFoundError, AgentRegistry, AgentSpec, DuplicateAgentError
from .delegate import AgentDelegate, DelegationResult

# Controller
from .intent import conversational_score, is_conversational
from .response_cache import ResponseCache
from .controller import ControllerConfig, ExecutionController

__all__ = [
    # types.py
    "ActionRequest",
    "AgentAction",
    "ChatConfig",
    "ChatProvider",
    "ChatResponse",
    "ConfigurationError",
    "ExecutionBudget",
    "ExecutionMode",
    "Message",
    "ProviderCapabilities",
    "RunError",
    "RunResult",
    "TerminationReason",
    "TokenUsage",
    "ToolAction",
    "normalize_arguments",
    # history.py
    "HistoryStore",
    # action_parser.py
    "ActionParser",
    "decode_action",
    "has_action_markup",
    "native_actions",
    "parse_actions",
    "strip_thinking",
    # hooks.py
    "HookEvent",
    "HookName",
    "InMemoryHookSink",
    "RunHooks",
    # tools
    "FunctionTool",
    "InMemoryToolCache",
    "InvokerConfig",
    "RetryPolicy",
    "Tool",
    "ToolContext",
    "ToolInvoker",
    "ToolOutcome",
    "ToolPolicy",
    "ToolRegistry",
    "ToolResultCache",
    "ToolSpec",
    # agents.py / delegate.py
    "AgentDelegate",
    "AgentNotFoundError",
    "AgentRegistry",
    "AgentSpec",
    "DelegationResult",
    "DuplicateAgentError",
    # controller
    "ControllerConfig",
    "ExecutionController",
    "ResponseCache",
    "conversational_score",
    "is_conversational",
]
