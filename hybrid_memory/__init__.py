"""Hybrid conversation memory: bounded in-process buffer mirrored to a durable store."""

from hybrid_memory.core.memory.hybrid import HybridMemory
from hybrid_memory.core.memory.manager import MemoryManager
from hybrid_memory.core.types import Message, Role

__version__ = "0.1.0"

__all__ = ["HybridMemory", "MemoryManager", "Message", "Role", "__version__"]
