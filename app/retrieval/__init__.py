"""
Retrieval module for conversation memory and paper ranking.
"""

# allows users to do: from app.retrieval import rank_papers_by_relevance, ContextRetriever
from .ranking import rank_papers_by_relevance
from .context_retriever import ContextRetriever, format_context_for_prompt

__all__ = ['rank_papers_by_relevance', 'ContextRetriever', 'format_context_for_prompt']
