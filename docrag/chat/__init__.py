"""Conversational layer on top of semantic search."""
from docrag.chat.session import ChatSession, SessionUsage

__all__ = ["ChatSession", "SessionUsage"]
