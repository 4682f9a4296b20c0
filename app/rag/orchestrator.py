"""
Chat orchestration for ScholarChat.

Assembles the system prompt from research and conversation-history context,
streams the LLM answer, and persists the finished exchange in the background.
"""
from typing import AsyncIterator, List, Optional, Set
import asyncio
import time
import uuid

from app.config import DEFAULT_NUM_PAPERS, MAX_CONTEXT_TOKENS, USE_LOCAL_LLM
from app.logging_config import get_logger
from app.models import ResearchContext
from app.rag.conversation_store import ConversationStore
from app.rag.generation import build_system_prompt, resolve_model, stream_completion
from app.rag.research import ResearchAugmenter
from app.retrieval.context_retriever import ContextRetriever, format_context_for_prompt

logger = get_logger(__name__)


class ChatOrchestrator:
    """
    Runs one chat turn end to end.

    Context retrieval and research augmentation are independent and run
    concurrently in worker threads; both degrade to "no context" on failure.
    Persistence happens in a detached task once the stream completes and its
    errors are only logged.
    """

    def __init__(
        self,
        context_retriever: ContextRetriever,
        research_augmenter: ResearchAugmenter,
        store: ConversationStore,
        stream_fn=stream_completion,
    ):
        self.context_retriever = context_retriever
        self.research_augmenter = research_augmenter
        self.store = store
        self.stream_fn = stream_fn
        # Strong references so pending saves aren't garbage collected mid-flight
        self._background_tasks: Set[asyncio.Task] = set()

    async def build_prompt(
        self,
        messages: List[dict],
        user_id: str,
        conversation_id: Optional[str],
        use_research: Optional[bool] = None,
        num_papers: int = DEFAULT_NUM_PAPERS,
        max_context_tokens: int = MAX_CONTEXT_TOKENS,
    ):
        """Fetch history and research context concurrently. Returns (system_prompt, ResearchContext)."""
        query = next((m["content"] for m in reversed(messages) if m["role"] == "user"), "")

        retrieval_start = time.time()
        bundle, research = await asyncio.gather(
            asyncio.to_thread(
                self.context_retriever.get_context, messages, user_id, conversation_id, max_context_tokens
            ),
            asyncio.to_thread(self.research_augmenter.augment, query, num_papers, use_research),
        )
        retrieval_time = (time.time() - retrieval_start) * 1000
        logger.info(f"Retrieval time: {retrieval_time:.0f}ms")

        system_prompt = build_system_prompt(research.context, format_context_for_prompt(bundle))
        return system_prompt, research

    async def stream_chat(
        self,
        messages: List[dict],
        user_id: str,
        conversation_id: Optional[str] = None,
        model: Optional[str] = None,
        use_local: bool = USE_LOCAL_LLM,
        use_research: Optional[bool] = None,
        num_papers: int = DEFAULT_NUM_PAPERS,
    ) -> AsyncIterator[dict]:
        """
        Stream one assistant turn as events.

        Events, in order: "start" (conversation_id, papers), any number of
        "token"/"reasoning", then "complete"; or "error" if generation fails.
        Context retrieval failures fall back to the base system prompt.
        """
        conversation_id = conversation_id or str(uuid.uuid4())
        model_name = resolve_model(model, use_local)

        try:
            system_prompt, research = await self.build_prompt(
                messages, user_id, conversation_id, use_research, num_papers
            )
        except Exception as e:
            # Context is optional, answer without it
            logger.error(f"Error building prompt context, continuing without: {e}", exc_info=True)
            system_prompt, research = build_system_prompt(), ResearchContext()

        yield {
            "type": "start",
            "conversation_id": conversation_id,
            "papers": [paper.to_dict() for paper in research.papers],
        }

        generated_response = ""
        try:
            async for event in self.stream_fn(system_prompt, messages, model_name, use_local):
                if event["type"] == "end_of_response":
                    generated_response = event["full_response"]
                else:
                    yield event
        except Exception as e:
            logger.error(f"Error generating response: {e}", exc_info=True)
            yield {"type": "error", "message": str(e)}
            return

        history = list(messages) + [{"role": "assistant", "content": generated_response}]
        self.schedule_save(user_id, history, model_name, conversation_id)

        yield {"type": "complete", "conversation_id": conversation_id}

    def schedule_save(self, user_id: str, messages: List[dict], model: str, conversation_id: str) -> asyncio.Task:
        """Persist in a detached task; failures are logged, never raised to the caller."""
        task = asyncio.create_task(
            asyncio.to_thread(self.store.save_conversation, user_id, messages, model, conversation_id)
        )
        self._background_tasks.add(task)
        task.add_done_callback(self._on_save_done)
        return task

    def _on_save_done(self, task: asyncio.Task) -> None:
        self._background_tasks.discard(task)
        if task.cancelled():
            logger.warning("Conversation save was cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Error saving conversation: {error}", exc_info=error)

    async def wait_for_pending_saves(self) -> None:
        """Await in-flight saves (used on shutdown)."""
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
