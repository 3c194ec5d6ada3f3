"""Conversational assistant core: tool routing, gateway calls and versioned documents."""

__version__ = "0.4.0"
