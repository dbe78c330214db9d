"""Chat data model, session store, and turn orchestration."""

from .message_model import ApiState, Chat, ChatRole, Message

__all__ = ["ApiState", "Chat", "ChatRole", "Message"]
