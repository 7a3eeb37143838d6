"""Static knowledge: canned replies, expert tips, regional statistics."""

from beruang.knowledge.store import KnowledgeConfig, KnowledgeStore, Tip

__all__ = ["KnowledgeConfig", "KnowledgeStore", "Tip"]
