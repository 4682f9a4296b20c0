"""
Core data models for ScholarChat.

These models represent the primary data structures passed between
research retrieval, conversation memory, and the chat orchestrator.
Messages themselves stay plain dicts ({"role": ..., "content": ...}) since
that is the shape both LLM providers and the JSONB column expect.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import List, Optional, Dict, Any


@dataclass
class Author:
    name: str
    author_id: Optional[str] = None


@dataclass
class ResearchPaper:
    """
    A paper returned by the Semantic Scholar search API.

    relevance_score is attached by ranking and is never persisted.
    """
    paper_id: str
    title: str
    abstract: Optional[str] = None
    year: Optional[int] = None
    authors: List[Author] = field(default_factory=list)
    venue: Optional[str] = None
    citation_count: int = 0
    url: Optional[str] = None
    doi: Optional[str] = None
    fields_of_study: Optional[List[str]] = None
    relevance_score: Optional[float] = None

    def with_score(self, score: float) -> "ResearchPaper":
        return replace(self, relevance_score=score)

    def to_dict(self) -> Dict[str, Any]:
        """Wire format shared with the frontend citation components."""
        data = {
            "paperId": self.paper_id,
            "title": self.title,
            "abstract": self.abstract,
            "year": self.year,
            "authors": [{"authorId": a.author_id, "name": a.name} for a in self.authors],
            "venue": self.venue,
            "citationCount": self.citation_count,
            "url": self.url,
            "doi": self.doi,
            "s2FieldsOfStudy": self.fields_of_study,
        }
        if self.relevance_score is not None:
            data["relevanceScore"] = self.relevance_score
        return data


@dataclass
class PaperSearchResponse:
    papers: List[ResearchPaper]
    total: int
    next: Optional[int] = None


@dataclass
class MessageMatch:
    """A single stored message that matched a similarity query."""
    score: float
    role: str
    content: str
    message_index: int
    timestamp: Optional[str] = None


@dataclass
class ConversationMatch:
    """
    Vector search hits grouped by conversation.

    max_score is the best-matching message score and is what conversations
    are ranked by.
    """
    conversation_id: str
    matches: List[MessageMatch] = field(default_factory=list)
    max_score: float = 0.0


@dataclass
class ConversationRecord:
    """A persisted conversation transcript, detached from the ORM session."""
    conversation_id: str
    user_id: str
    model: str
    title: str
    messages: List[dict] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class ContextConversation:
    conversation_id: str
    title: str
    messages: List[dict]
    relevance_score: float
    timestamp: Optional[datetime] = None


@dataclass
class ContextBundle:
    """
    Past conversations selected for the prompt, ordered by relevance.

    total_tokens is the running chars/4 estimate and never exceeds the
    budget the bundle was built with.
    """
    conversations: List[ContextConversation] = field(default_factory=list)
    total_tokens: int = 0


@dataclass
class ResearchContext:
    """Papers selected for a query and the prompt block built from them."""
    papers: List[ResearchPaper] = field(default_factory=list)
    context: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.papers


@dataclass
class EmbeddingRecord:
    """A message vector plus the metadata mirrored alongside it in the index."""
    id: str  # "{conversation_id}-msg-{message_index}"
    vector: List[float]
    conversation_id: str
    user_id: str
    role: str
    content: str
    message_index: int
    timestamp: Optional[datetime] = None
    model: Optional[str] = None


@dataclass
class VectorMatch:
    id: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)
