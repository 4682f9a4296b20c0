"""
Initialize the database with pgvector extension and create tables.

Run this script to set up your database:
    python -m app.db.init_db
"""
from sqlalchemy import text
from .database import engine, Base
from .models import Conversation, MessageEmbedding  # noqa: F401 (registers tables)


def init_db():
    """Create pgvector extension and all tables with indexes"""

    print("Initializing database...")

    with engine.connect() as conn:
        conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        conn.commit()
        print("✓ pgvector extension enabled")

    Base.metadata.create_all(bind=engine)
    print("✓ Database tables created")

    print("\nTables created:")
    print("  - conversations (transcripts, JSONB messages)")
    print("  - message_embeddings (one vector per message)")
    print("\nIndexes created:")
    print("  - INDEX(user_id, updated_at) on conversations")
    print("  - INDEX(user_id) on message_embeddings")
    print("  - HNSW INDEX(embedding) on message_embeddings (m=16, ef_construction=64)")


if __name__ == "__main__":
    init_db()
