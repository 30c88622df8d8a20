"""
AI Core Service – provider-agnostic routing under a spend budget.

Exports the public API surface; no network I/O or initialisation on import.
"""

from .base_provider import BaseProvider
from .budget import Admission, BudgetLedger, DatabaseLedgerStore, LedgerStore, Reservation
from .config import AIConfig, ModelSelection
from .router import AIRouter, build_provider
from .schemas import ChatOptions, ChatResponse, EmbeddingResponse, Message, TokenKind, TokenUsage

__all__ = [
    "AIConfig",
    "AIRouter",
    "Admission",
    "BaseProvider",
    "BudgetLedger",
    "ChatOptions",
    "ChatResponse",
    "DatabaseLedgerStore",
    "EmbeddingResponse",
    "LedgerStore",
    "Message",
    "ModelSelection",
    "Reservation",
    "TokenKind",
    "TokenUsage",
    "build_provider",
]
