"""
Database models for ScholarChat conversation memory.

SCHEMA OVERVIEW
===============================================================================

TABLE: conversations - Chat transcripts owned by a user
-------------------------------------------------------------------------------
id                VARCHAR       PRIMARY KEY        uuid4 string (client may supply)
user_id           VARCHAR       NOT NULL
model             VARCHAR       NOT NULL           LLM model id used for the chat
title             TEXT          NOT NULL           First user message, 50 chars + "..."
messages          JSONB         NOT NULL           [{"role": ..., "content": ...}, ...]
created_at        TIMESTAMP     DEFAULT NOW()
updated_at        TIMESTAMP     DEFAULT NOW()      Bumped on every save

INDEX: idx_conversations_user_updated ON (user_id, updated_at)


TABLE: message_embeddings - One vector per stored message
-------------------------------------------------------------------------------
id                VARCHAR       PRIMARY KEY        "{conversation_id}-msg-{message_index}"
conversation_id   VARCHAR       NOT NULL FK        conversations.id (ON DELETE CASCADE)
user_id           VARCHAR       NOT NULL           Mirrors conversations.user_id for filtering
role              VARCHAR       NOT NULL
content           TEXT          NOT NULL
message_index     INTEGER       NOT NULL
timestamp         TIMESTAMP                        conversations.updated_at at save time
model             VARCHAR
embedding         VECTOR(768)   NOT NULL           nomic-embed-text of "{role}: {content}"

INDEX: idx_message_embeddings_user ON user_id
INDEX: idx_message_embeddings_conversation ON conversation_id
INDEX: idx_message_embeddings_embedding ON embedding USING hnsw (m=16, ef_construction=64)
"""
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, func, Index
from sqlalchemy.dialects.postgresql import JSONB
from pgvector.sqlalchemy import Vector

from app.config import EMBEDDING_DIMENSIONS
from .database import Base


class Conversation(Base):
    """Conversation transcript. Only ever upserted, never deleted by the app."""
    __tablename__ = "conversations"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False)
    model = Column(String, nullable=False)
    title = Column(Text, nullable=False)
    messages = Column(JSONB, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index('idx_conversations_user_updated', 'user_id', 'updated_at'),
    )

    def __repr__(self):
        return f"<Conversation(id={self.id}, user_id={self.user_id}, title={self.title[:50]})>"


class MessageEmbedding(Base):
    """Per-message vector with a metadata mirror, replaced wholesale on re-save."""
    __tablename__ = "message_embeddings"

    id = Column(String, primary_key=True)
    conversation_id = Column(String, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String, nullable=False)
    role = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    message_index = Column(Integer, nullable=False)
    timestamp = Column(DateTime(timezone=True))
    model = Column(String)

    embedding = Column(Vector(EMBEDDING_DIMENSIONS), nullable=False)

    __table_args__ = (
        Index('idx_message_embeddings_user', 'user_id'),
        Index('idx_message_embeddings_conversation', 'conversation_id'),
        Index('idx_message_embeddings_embedding', 'embedding', postgresql_using='hnsw',
              postgresql_with={'m': 16, 'ef_construction': 64},
              postgresql_ops={'embedding': 'vector_cosine_ops'}),
    )

    def __repr__(self):
        return f"<MessageEmbedding(id={self.id}, role={self.role})>"
