from .knowledge_base import KnowledgeBase, KnowledgeMatch, parse_markdown_sections

__all__ = ["KnowledgeBase", "KnowledgeMatch", "parse_markdown_sections"]
