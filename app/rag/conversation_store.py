"""
Conversation Store for ScholarChat.

Persists chat transcripts to Postgres and indexes every message in the
pgvector table so later chats can pull in related past conversations.
"""
from typing import Dict, List, Optional
import time
import uuid
from sqlalchemy import Text, cast, func, or_, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.orm import sessionmaker

from app.db.database import SessionLocal
from app.db.models import Conversation
from app.ingestion.embeddings import EmbeddingService
from app.logging_config import get_logger
from app.models import ConversationMatch, ConversationRecord, EmbeddingRecord, MessageMatch
from app.retrieval.vector_index import PgVectorIndex

logger = get_logger(__name__)

TITLE_MAX_CHARS = 50
# Score assigned to plain text-search hits, which have no similarity
TEXT_SEARCH_SCORE = 0.8


def generate_conversation_title(messages: List[dict]) -> str:
    """First user message, cut to 50 chars with "..." when truncated."""
    first_user_message = next((m["content"] for m in messages if m["role"] == "user"), None)
    if first_user_message is None:
        return "New Conversation"

    title = first_user_message[:TITLE_MAX_CHARS]
    return f"{title}..." if len(title) < len(first_user_message) else title


def _to_record(row: Conversation) -> ConversationRecord:
    return ConversationRecord(
        conversation_id=row.id,
        user_id=row.user_id,
        model=row.model,
        title=row.title,
        messages=list(row.messages or []),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class ConversationRepository:
    """Relational access to the conversations table."""

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory

    def upsert(self, conversation_id: str, user_id: str, model: str, messages: List[dict]) -> ConversationRecord:
        """
        Insert a conversation or replace the messages of an existing one.

        Raises:
            PermissionError: conversation_id exists but belongs to another user
        """
        stmt = insert(Conversation).values(
            id=conversation_id,
            user_id=user_id,
            model=model,
            title=generate_conversation_title(messages),
            messages=messages,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[Conversation.id],
            set_={"messages": stmt.excluded.messages, "updated_at": func.now()},
            where=Conversation.user_id == user_id,
        ).returning(Conversation)

        with self.session_factory() as session:
            row = session.scalars(stmt).first()
            if row is None:
                session.rollback()
                raise PermissionError(f"Conversation {conversation_id} belongs to another user")
            record = _to_record(row)
            session.commit()
        return record

    def find_many(self, user_id: str, limit: int = 50) -> List[ConversationRecord]:
        """Most recently updated conversations for a user."""
        stmt = (
            select(Conversation)
            .where(Conversation.user_id == user_id)
            .order_by(Conversation.updated_at.desc())
            .limit(limit)
        )
        with self.session_factory() as session:
            return [_to_record(row) for row in session.scalars(stmt)]

    def find_first(self, conversation_id: str, user_id: str) -> Optional[ConversationRecord]:
        """Conversation by id, only if owned by user_id."""
        stmt = select(Conversation).where(
            Conversation.id == conversation_id,
            Conversation.user_id == user_id,
        )
        with self.session_factory() as session:
            row = session.scalars(stmt).first()
            return _to_record(row) if row else None

    def text_search(self, query: str, user_id: str, limit: int = 10) -> List[ConversationRecord]:
        """Case-insensitive substring match on title or message text."""
        pattern = f"%{query}%"
        stmt = (
            select(Conversation)
            .where(
                Conversation.user_id == user_id,
                or_(
                    Conversation.title.ilike(pattern),
                    cast(Conversation.messages, Text).ilike(pattern),
                ),
            )
            .order_by(Conversation.updated_at.desc())
            .limit(limit)
        )
        with self.session_factory() as session:
            return [_to_record(row) for row in session.scalars(stmt)]


class ConversationStore:
    """
    Saves and searches conversations.

    Handles:
    - Transcript upsert (relational, authoritative)
    - Per-message embedding and vector indexing (best effort)
    - Semantic search grouped by conversation, with a text-search fallback
      when no vector index is configured
    """

    def __init__(
        self,
        repository: ConversationRepository,
        embedding_service: EmbeddingService,
        vector_index: Optional[PgVectorIndex] = None,
    ):
        self.repository = repository
        self.embedding_service = embedding_service
        self.vector_index = vector_index

    def save_conversation(
        self,
        user_id: str,
        messages: List[dict],
        model: str,
        conversation_id: Optional[str] = None,
    ) -> ConversationRecord:
        """
        Persist a conversation and (re)index its messages.

        The relational write must succeed, its errors propagate. Embedding or
        index failures are logged and leave the transcript saved without
        (some of) its vectors.
        """
        save_start = time.time()
        c_id = conversation_id or str(uuid.uuid4())
        record = self.repository.upsert(c_id, user_id, model, messages)

        if self.vector_index is None:
            logger.info("Vector index not configured - skipping semantic search indexing")
            return record

        texts = [f"{m['role']}: {m['content']}" for m in messages]
        embeddings = self.embedding_service.embed_many(texts)

        vectors = []
        for i, (message, embedding) in enumerate(zip(messages, embeddings)):
            # Continue without this message rather than failing the entire save
            if embedding is None:
                continue
            vectors.append(EmbeddingRecord(
                id=f"{record.conversation_id}-msg-{i}",
                vector=embedding,
                conversation_id=record.conversation_id,
                user_id=user_id,
                role=message["role"],
                content=message["content"],
                message_index=i,
                timestamp=record.updated_at,
                model=model,
            ))

        # Always replace, an empty list clears stale vectors from earlier saves
        try:
            self.vector_index.replace_conversation(record.conversation_id, vectors)
        except Exception as e:
            # Transcript is already saved, vectors can be rebuilt on next save
            logger.error(f"Error indexing conversation {record.conversation_id}: {e}", exc_info=True)

        save_time = (time.time() - save_start) * 1000
        logger.info(f"Saved conversation {record.conversation_id} ({len(messages)} messages, {len(vectors)} vectors) in {save_time:.0f}ms")
        return record

    def search_conversations(self, query: str, user_id: str, top_k: int = 10) -> List[ConversationMatch]:
        """
        Find the user's conversations related to query, best first.

        top_k bounds the number of matching messages; results are grouped by
        conversation and ranked by each conversation's best message score.

        Raises:
            EmbeddingError: query could not be embedded
        """
        if self.vector_index is None:
            logger.info("Vector index not available - falling back to basic text search")
            return [
                ConversationMatch(
                    conversation_id=conv.conversation_id,
                    matches=[MessageMatch(
                        score=TEXT_SEARCH_SCORE,
                        role="system",
                        content=conv.title,
                        message_index=0,
                        timestamp=conv.updated_at.isoformat() if conv.updated_at else None,
                    )],
                    max_score=TEXT_SEARCH_SCORE,
                )
                for conv in self.repository.text_search(query, user_id, top_k)
            ]

        query_embedding = self.embedding_service.embed_single(query)
        vector_matches = self.vector_index.query(query_embedding, top_k, user_id)

        grouped: Dict[str, ConversationMatch] = {}
        for match in vector_matches:
            metadata = match.metadata
            c_id = metadata.get("conversation_id")
            if not c_id:
                continue

            conv = grouped.setdefault(c_id, ConversationMatch(conversation_id=c_id))
            conv.matches.append(MessageMatch(
                score=match.score,
                role=metadata.get("role", ""),
                content=metadata.get("content", ""),
                message_index=metadata.get("message_index", 0),
                timestamp=metadata.get("timestamp"),
            ))
            conv.max_score = max(conv.max_score, match.score)

        return sorted(grouped.values(), key=lambda c: c.max_score, reverse=True)

    def get_conversation_history(self, user_id: str, limit: int = 50) -> List[ConversationRecord]:
        return self.repository.find_many(user_id, limit)

    def get_conversation(self, conversation_id: str, user_id: str) -> Optional[ConversationRecord]:
        return self.repository.find_first(conversation_id, user_id)
