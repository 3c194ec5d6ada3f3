"""Workflow gateway transport: event-stream framing and the correlated RPC client."""

from .client import RPCResult, StreamingRPCClient, ToolInvocation, new_correlation_id
from .sse import EventStreamDecoder, ServerSentEvent

__all__ = [
    "EventStreamDecoder",
    "RPCResult",
    "ServerSentEvent",
    "StreamingRPCClient",
    "ToolInvocation",
    "new_correlation_id",
]
