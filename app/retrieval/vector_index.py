"""
pgvector-backed message index for ScholarChat.

Stores one embedding per conversation message and answers cosine-similarity
queries filtered to a single user.
"""
from typing import List
import time
from sqlalchemy import text, delete
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.orm import sessionmaker

from app.db.database import SessionLocal
from app.db.models import MessageEmbedding
from app.logging_config import get_logger
from app.models import EmbeddingRecord, VectorMatch

logger = get_logger(__name__)


class PgVectorIndex:
    """Vector index over the message_embeddings table."""

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory

    def replace_conversation(self, conversation_id: str, records: List[EmbeddingRecord]) -> int:
        """
        Replace every vector of a conversation with records, in one transaction.

        Returns:
            Number of records written
        """
        rows = [
            {
                "id": r.id,
                "conversation_id": r.conversation_id,
                "user_id": r.user_id,
                "role": r.role,
                "content": r.content,
                "message_index": r.message_index,
                "timestamp": r.timestamp,
                "model": r.model,
                "embedding": r.vector,
            }
            for r in records
        ]

        with self.session_factory() as session:
            session.execute(delete(MessageEmbedding).where(MessageEmbedding.conversation_id == conversation_id))
            if rows:
                stmt = insert(MessageEmbedding).values(rows)
                stmt = stmt.on_conflict_do_update(
                    index_elements=[MessageEmbedding.id],
                    set_={col: stmt.excluded[col] for col in rows[0] if col != "id"},
                )
                session.execute(stmt)
            session.commit()

        logger.debug(f"Indexed {len(rows)} message vectors for conversation {conversation_id}")
        return len(rows)

    def query(self, vector: List[float], top_k: int, user_id: str) -> List[VectorMatch]:
        """
        Return the top_k most similar messages belonging to user_id.

        Score is cosine similarity (1 - cosine distance), highest first.
        """
        search_start = time.time()
        stmt = text(
            """
select
emb.id
, 1 - (emb.embedding <=> :query_vector) as score
, emb.conversation_id
, emb.user_id
, emb.role
, emb.content
, emb.message_index
, emb.timestamp
, emb.model

from message_embeddings emb
where emb.user_id = :user_id
order by emb.embedding <=> :query_vector asc
limit :top_k
"""
        )

        with self.session_factory() as session:
            rows = session.execute(stmt, {
                "query_vector": str(vector),
                "user_id": user_id,
                "top_k": top_k,
            }).fetchall()

        search_time = (time.time() - search_start) * 1000
        logger.info(f"  Vector search time: {search_time:.0f}ms ({len(rows)} matches)")

        return [
            VectorMatch(
                id=row.id,
                score=float(row.score or 0.0),
                metadata={
                    "conversation_id": row.conversation_id,
                    "user_id": row.user_id,
                    "role": row.role,
                    "content": row.content,
                    "message_index": row.message_index,
                    "timestamp": row.timestamp.isoformat() if row.timestamp else None,
                    "model": row.model,
                },
            )
            for row in rows
        ]
