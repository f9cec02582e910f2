"""Storage backends for colloquy."""

from .conversation import ConversationStatus, ConversationStore, StoredConversation

__all__ = ['ConversationStatus', 'ConversationStore', 'StoredConversation']
