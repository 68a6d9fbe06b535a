"""Memory tiers: message buffer, relevance scoring, pruning, batched persistence.

Each HybridMemory owns one session's buffer and mirrors it to the durable
store through the BatchScheduler and DurableStoreAdapter.
"""

from hybrid_memory.core.memory.hybrid import HybridMemory
from hybrid_memory.core.memory.manager import MemoryManager
from hybrid_memory.core.memory.relevance import LexicalScorer, VectorScorer
from hybrid_memory.core.memory.store import DurableStoreAdapter, SQLiteConversationStore

__all__ = [
    "HybridMemory",
    "MemoryManager",
    "LexicalScorer",
    "VectorScorer",
    "DurableStoreAdapter",
    "SQLiteConversationStore",
]
