"""Chatline: conversational chat service with bounded context windows."""

__version__ = "0.1.0"
