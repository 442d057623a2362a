"""linchat -- streaming chat client with a bounded tool-calling loop."""

__version__ = "0.1.0"
