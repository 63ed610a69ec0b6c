"""Multi-pass streaming tool-calling agent loop."""

from .assembler import AssemblyResult, MalformedToolCall, ToolCallAssembler, synthesize_call_id
from .background import BackgroundFailure, BackgroundTaskQueue
from .clarification import (
    ChatModelIntentAnalyzer,
    ClarificationDecision,
    ClarificationStage,
    ClarifyingQuestion,
    IntentAnalyzer,
)
from .controller import ControllerConfig, ControllerState, PassController
from .events import AgentEvent, EventChannel, EventEmitter, EventName, ToolCallPhase
from .mode_gate import MODE_PERMISSIONS, ModeGate, denial_message
from .orchestrator import (
    ChatOrchestrator,
    ConversationStore,
    IdentityResolver,
    OrchestratorConfig,
    resolve_with_timeout,
)
from .tool_executor import TIMEOUT_MESSAGE, ToolExecutor, format_tool_result_message
from .types import (
    AgentContext,
    Message,
    PassState,
    PendingToolCall,
    ToolContext,
    ToolExecutionResult,
    ToolHistoryEntry,
    ToolInvocation,
    ToolLogEntry,
    ToolLogStatus,
    TurnResult,
)

__all__ = [
    "AssemblyResult",
    "MalformedToolCall",
    "ToolCallAssembler",
    "synthesize_call_id",
    "BackgroundFailure",
    "BackgroundTaskQueue",
    "ChatModelIntentAnalyzer",
    "ClarificationDecision",
    "ClarificationStage",
    "ClarifyingQuestion",
    "IntentAnalyzer",
    "ControllerConfig",
    "ControllerState",
    "PassController",
    "AgentEvent",
    "EventChannel",
    "EventEmitter",
    "EventName",
    "ToolCallPhase",
    "MODE_PERMISSIONS",
    "ModeGate",
    "denial_message",
    "ChatOrchestrator",
    "ConversationStore",
    "IdentityResolver",
    "OrchestratorConfig",
    "resolve_with_timeout",
    "TIMEOUT_MESSAGE",
    "ToolExecutor",
    "format_tool_result_message",
    "AgentContext",
    "Message",
    "PassState",
    "PendingToolCall",
    "ToolContext",
    "ToolExecutionResult",
    "ToolHistoryEntry",
    "ToolInvocation",
    "ToolLogEntry",
    "ToolLogStatus",
    "TurnResult",
]
