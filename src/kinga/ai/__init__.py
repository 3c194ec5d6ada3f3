"""AI client, gateway transport, tool layer, and turn orchestration."""

from .client import AIClient, ChatReply, ClientSettings, ToolCallRequest

__all__ = ["AIClient", "ChatReply", "ClientSettings", "ToolCallRequest"]
