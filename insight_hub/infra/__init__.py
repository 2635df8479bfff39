"""Infra layer adapters (storage, catalog, hub, summarizer, chat)."""

from .chat import ChatWebhookNotifier
from .gemini import GeminiSummarizer
from .hub import WebSubHubClient
from .storage import SQLiteManager, Store
from .youtube import YouTubeCatalog

__all__ = [
    "ChatWebhookNotifier",
    "GeminiSummarizer",
    "SQLiteManager",
    "Store",
    "WebSubHubClient",
    "YouTubeCatalog",
]
