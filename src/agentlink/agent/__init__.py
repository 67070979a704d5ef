from .agent import Agent
from .history import ConversationStore
from .llm import ChatModel, ModelReply, OpenAIChatModel, ToolCallRequest
from .stream import EventStream, StreamMessage

__all__ = [
    "Agent",
    "ChatModel",
    "ConversationStore",
    "EventStream",
    "ModelReply",
    "OpenAIChatModel",
    "StreamMessage",
    "ToolCallRequest",
]
