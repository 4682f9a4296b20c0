"""
RAG (Retrieval-Augmented Generation) module for chat with conversation memory and research papers.
"""
from .generation import stream_completion, build_system_prompt
from .orchestrator import ChatOrchestrator

__all__ = ['stream_completion', 'build_system_prompt', 'ChatOrchestrator']
