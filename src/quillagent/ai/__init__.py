"""Model endpoint access and the streaming tool-calling agent."""

from .client import AIClient, ChatModel, ClientSettings, ModelEndpointError
from .streaming import FinishSignal, StreamChunk, StreamDecoder, TextDelta, ToolCallDelta

__all__ = [
    "AIClient",
    "ChatModel",
    "ClientSettings",
    "ModelEndpointError",
    "FinishSignal",
    "StreamChunk",
    "StreamDecoder",
    "TextDelta",
    "ToolCallDelta",
]
