"""Conversation storage package."""

from .models import ConversationStatus, StoredConversation
from .store import ConversationStore

__all__ = ['ConversationStatus', 'StoredConversation', 'ConversationStore']
