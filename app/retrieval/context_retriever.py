"""
Conversation-history retrieval for ScholarChat.

Finds the user's past conversations that relate to the message being
answered, fits as many as the token budget allows, and renders them as a
prompt block.
"""
from typing import List, Optional
import json
import math
import time

from app.config import MAX_CONTEXT_TOKENS, CONTEXT_CANDIDATES, MAX_CONTEXT_CONVERSATIONS
from app.exceptions import EmbeddingError
from app.logging_config import get_logger
from app.models import ContextBundle, ContextConversation

logger = get_logger(__name__)

MESSAGES_PER_CONVERSATION = 4
MESSAGE_PREVIEW_CHARS = 200


def estimate_tokens(messages: List[dict]) -> int:
    """Rough token count: compact JSON length / 4, rounded up."""
    serialized = json.dumps(messages, separators=(",", ":"), ensure_ascii=False)
    return math.ceil(len(serialized) / 4)


class ContextRetriever:
    """Pulls related past conversations for the prompt from a ConversationStore."""

    def __init__(self, store):
        self.store = store

    def get_context(
        self,
        current_messages: List[dict],
        user_id: str,
        current_conversation_id: Optional[str] = None,
        max_context_tokens: int = MAX_CONTEXT_TOKENS,
    ) -> Optional[ContextBundle]:
        """
        Build a ContextBundle of related past conversations.

        Args:
            current_messages: Message history of the conversation being composed
            user_id: Owner whose conversations may be searched
            current_conversation_id: Excluded from results
            max_context_tokens: Budget for the summed token estimates

        Returns:
            ContextBundle, or None when there is no user message, no related
            conversation, or none fits the budget. Retrieval failures are logged
            and also return None.

        The search asks for the top CONTEXT_CANDIDATES matching messages, which
        are then grouped by conversation, so fewer candidate conversations can
        come back when several matches share one conversation.
        """
        query = next((m["content"] for m in reversed(current_messages) if m["role"] == "user"), None)
        if not query:
            return None

        retrieval_start = time.time()
        try:
            candidates = self.store.search_conversations(query, user_id, top_k=CONTEXT_CANDIDATES)
            candidates = [c for c in candidates if c.conversation_id != current_conversation_id]
            if not candidates:
                return None

            bundle = ContextBundle()
            for candidate in candidates[:MAX_CONTEXT_CONVERSATIONS]:
                conversation = self.store.get_conversation(candidate.conversation_id, user_id)
                if conversation is None:
                    continue

                tokens = estimate_tokens(conversation.messages)
                if bundle.total_tokens + tokens > max_context_tokens:
                    break

                bundle.conversations.append(ContextConversation(
                    conversation_id=conversation.conversation_id,
                    title=conversation.title,
                    messages=conversation.messages,
                    relevance_score=candidate.max_score,
                    timestamp=conversation.updated_at,
                ))
                bundle.total_tokens += tokens

        except EmbeddingError as e:
            logger.warning(f"No conversation context available: {e}")
            return None
        except Exception as e:
            logger.error(f"Error retrieving conversation context: {e}", exc_info=True)
            return None

        retrieval_time = (time.time() - retrieval_start) * 1000
        logger.info(f"  Context retrieval time: {retrieval_time:.0f}ms ({len(bundle.conversations)} conversations, ~{bundle.total_tokens} tokens)")

        return bundle if bundle.conversations else None


def _truncate(text: str, limit: int) -> str:
    return text[:limit] + "..." if len(text) > limit else text


def _format_date(timestamp) -> str:
    # en-US short date, e.g. 3/7/2025
    if timestamp is None:
        return "Unknown date"
    return f"{timestamp.month}/{timestamp.day}/{timestamp.year}"


def format_context_for_prompt(bundle: Optional[ContextBundle]) -> str:
    """Render a ContextBundle as a system-prompt block. Empty string for no context."""
    if not bundle or not bundle.conversations:
        return ""

    sections = ["## Relevant context from previous conversations\n"]

    for i, conv in enumerate(bundle.conversations, 1):
        sections.append(f"### Conversation {i}: {conv.title}")
        sections.append(f"Relevance: {conv.relevance_score:.2f} | Date: {_format_date(conv.timestamp)}")

        recent = [m for m in conv.messages if m["role"] in ("user", "assistant")][-MESSAGES_PER_CONVERSATION:]
        for message in recent:
            speaker = "User" if message["role"] == "user" else "Assistant"
            sections.append(f"{speaker}: {_truncate(message['content'], MESSAGE_PREVIEW_CHARS)}")
        sections.append("")

    sections.append(
        "Use this context to inform your response where relevant, but do not "
        "explicitly mention previous conversations unless the user asks about them."
    )
    return "\n".join(sections)
