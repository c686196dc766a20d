"""Chat request orchestration."""

from sitebot.chat.orchestrator import ChatOrchestrator, ChatResult

__all__ = ["ChatOrchestrator", "ChatResult"]
