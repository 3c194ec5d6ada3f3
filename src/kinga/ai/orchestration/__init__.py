"""Turn orchestration: hard-routing, model dispatch, and the chat service."""

from .chat_service import ChatRequest, ChatResult, ChatService
from .dispatcher import LLMDispatcher, TextReply, ToolCallReply
from .history import ConversationTurn, build_conversation_history
from .router import RouterResult, ToolInvocationRouter

__all__ = [
    "ChatRequest",
    "ChatResult",
    "ChatService",
    "ConversationTurn",
    "LLMDispatcher",
    "RouterResult",
    "TextReply",
    "ToolCallReply",
    "ToolInvocationRouter",
    "build_conversation_history",
]
