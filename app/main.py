from fastapi import FastAPI, HTTPException, Header, Query, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from typing import Optional, List, Literal
import asyncio
import json
import time

from app.config import (
    CORS_ORIGINS,
    DEFAULT_NUM_PAPERS,
    GENERATION_TIMEOUT_SECONDS,
    LOG_FILE,
    LOG_LEVEL,
    MAX_RESEARCH_ENDPOINT_CANDIDATES,
    USE_LOCAL_LLM,
    VECTOR_SEARCH_ENABLED,
)
from app.exceptions import RateLimitedError
from app.ingestion.embeddings import EmbeddingService
from app.ingestion.semantic_scholar import SemanticScholarClient
from app.logging_config import setup_logging, get_logger
from app.rag.conversation_store import ConversationRepository, ConversationStore
from app.rag.generation import RESEARCH_ANSWER_PROMPT, generate_text
from app.rag.orchestrator import ChatOrchestrator
from app.rag.research import ResearchAugmenter, extract_paper_context
from app.rag.response_processing import link_citations
from app.retrieval.context_retriever import ContextRetriever
from app.retrieval.vector_index import PgVectorIndex

# Configure logging on startup
setup_logging(level=LOG_LEVEL, log_file=LOG_FILE or None)
logger = get_logger(__name__)

# Wire services once per process
conversation_store = ConversationStore(
    repository=ConversationRepository(),
    embedding_service=EmbeddingService(),
    vector_index=PgVectorIndex() if VECTOR_SEARCH_ENABLED else None,
)
research_augmenter = ResearchAugmenter(SemanticScholarClient())
orchestrator = ChatOrchestrator(
    context_retriever=ContextRetriever(conversation_store),
    research_augmenter=research_augmenter,
    store=conversation_store,
)

NO_PAPERS_MESSAGE = (
    "I couldn't find any relevant research papers for your query. "
    "Please try rephrasing your question or using different keywords."
)

app = FastAPI(title="ScholarChat API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Authenticated user id, set by the auth proxy in front of the API."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id


class ChatMessage(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str


class ChatRequest(BaseModel):
    messages: List[ChatMessage]
    conversation_id: Optional[str] = None
    model: Optional[str] = None
    use_local: Optional[bool] = None
    use_research: Optional[bool] = None
    num_papers: int = Field(default=DEFAULT_NUM_PAPERS, ge=1, le=15)


class ResearchRequest(BaseModel):
    query: str = ""
    num_papers: int = Field(default=DEFAULT_NUM_PAPERS, ge=1, le=20)
    fields: Optional[List[str]] = None
    use_local: Optional[bool] = None


class ResearchResponse(BaseModel):
    papers: List[dict]
    total_results: int
    query: str
    generated_answer: str
    linked_answer: str


class ConversationSearchRequest(BaseModel):
    query: Optional[str] = None
    top_k: int = Field(default=10, ge=1, le=100)


class ConversationSummaryResponse(BaseModel):
    conversation_id: str
    title: str
    model: str
    created_at: Optional[str]
    updated_at: Optional[str]


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


@app.on_event("startup")
async def startup_event():
    logger.info("Starting ScholarChat API")
    logger.info(f"Using local LLM: {USE_LOCAL_LLM}, vector search: {VECTOR_SEARCH_ENABLED}")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Shutting down ScholarChat API, flushing pending conversation saves")
    await orchestrator.wait_for_pending_saves()


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "message": "ScholarChat API is running"}


@app.post("/chat/stream")
async def send_message_stream(request: ChatRequest, user_id: str = Depends(get_user_id)):
    """Streams tokens via SSE (Server Sent Events), saves the conversation after completion"""
    messages = [m.model_dump() for m in request.messages]
    if not any(m["role"] == "user" and m["content"].strip() for m in messages):
        raise HTTPException(status_code=400, detail="At least one user message is required")

    use_local = request.use_local if request.use_local is not None else USE_LOCAL_LLM
    logger.info(f"Received message: {messages[-1]['content'][:100]}...")

    async def event_generator():
        try:
            async with asyncio.timeout(GENERATION_TIMEOUT_SECONDS):
                async for event in orchestrator.stream_chat(
                    messages,
                    user_id,
                    conversation_id=request.conversation_id,
                    model=request.model,
                    use_local=use_local,
                    use_research=request.use_research,
                    num_papers=request.num_papers,
                ):
                    yield f"data: {json.dumps(event)}\n\n"
        except asyncio.TimeoutError:
            logger.error("Generation timed out")
            yield f"data: {json.dumps({'type': 'error', 'message': 'Generation timeout'})}\n\n"
        except Exception as e:
            logger.error(f"Error streaming chat: {e}", exc_info=True)
            yield f"data: {json.dumps({'type': 'error', 'message': str(e)})}\n\n"

    return StreamingResponse(event_generator(), media_type="text/event-stream")


@app.post("/research", response_model=ResearchResponse)
async def research_answer(request: ResearchRequest, user_id: str = Depends(get_user_id)):
    """Find papers for a question and answer it with numbered citations"""
    query = request.query.strip()
    if not query:
        raise HTTPException(status_code=400, detail="Query is required")

    use_local = request.use_local if request.use_local is not None else USE_LOCAL_LLM
    logger.info(f"Searching for {request.num_papers} papers on: {query[:100]}")

    try:
        papers, total = await asyncio.to_thread(
            research_augmenter.find_papers,
            query,
            request.num_papers,
            MAX_RESEARCH_ENDPOINT_CANDIDATES,
            request.fields,
        )
        if not papers:
            return ResearchResponse(
                papers=[],
                total_results=0,
                query=query,
                generated_answer=NO_PAPERS_MESSAGE,
                linked_answer=NO_PAPERS_MESSAGE,
            )

        generation_start = time.time()
        system_prompt = RESEARCH_ANSWER_PROMPT.format(paper_context=extract_paper_context(papers), query=query)
        answer = await generate_text(
            system_prompt,
            f'Please provide a comprehensive answer to: "{query}" based on the research papers provided. '
            f'Make sure to cite relevant papers using the [1], [2], etc. format.',
            use_local=use_local,
        )
        generation_time_ms = (time.time() - generation_start) * 1000
        logger.info(f"Generated research answer from {len(papers)} papers in {generation_time_ms:.0f}ms")

        return ResearchResponse(
            papers=[paper.to_dict() for paper in papers],
            total_results=total,
            query=query,
            generated_answer=answer,
            linked_answer=link_citations(answer, papers),
        )

    except RateLimitedError as e:
        raise HTTPException(status_code=429, detail=str(e))
    except Exception as e:
        logger.error(f"Error in research endpoint: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to search research papers")


@app.get("/conversations", response_model=List[ConversationSummaryResponse])
async def get_conversation_history(
    limit: int = Query(default=50, ge=1, le=200),
    user_id: str = Depends(get_user_id),
):
    try:
        conversations = await asyncio.to_thread(conversation_store.get_conversation_history, user_id, limit)
    except Exception as e:
        logger.error(f"Error fetching conversation history: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal Server Error")

    return [
        ConversationSummaryResponse(
            conversation_id=c.conversation_id,
            title=c.title,
            model=c.model,
            created_at=_iso(c.created_at),
            updated_at=_iso(c.updated_at),
        )
        for c in conversations
    ]


@app.get("/conversations/{conversation_id}")
async def get_conversation_detail(conversation_id: str, user_id: str = Depends(get_user_id)):
    """Get full details for a specific conversation"""
    try:
        c = await asyncio.to_thread(conversation_store.get_conversation, conversation_id, user_id)
    except Exception as e:
        logger.error(f"Error fetching conversation: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal Server Error")

    if not c:
        raise HTTPException(status_code=404, detail="Conversation not found")

    return {
        "conversation_id": c.conversation_id,
        "title": c.title,
        "model": c.model,
        "messages": c.messages,
        "created_at": _iso(c.created_at),
        "updated_at": _iso(c.updated_at),
    }


@app.post("/conversations/search")
async def search_conversations(request: ConversationSearchRequest, user_id: str = Depends(get_user_id)):
    """Semantic search over the user's past conversations"""
    if not request.query or not request.query.strip():
        raise HTTPException(status_code=400, detail="Query is required")

    try:
        results = await asyncio.to_thread(
            conversation_store.search_conversations, request.query, user_id, request.top_k
        )
    except Exception as e:
        logger.error(f"Error searching conversations: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal Server Error")

    return {
        "results": [
            {
                "conversation_id": r.conversation_id,
                "max_score": r.max_score,
                "matches": [
                    {
                        "score": m.score,
                        "role": m.role,
                        "content": m.content,
                        "message_index": m.message_index,
                        "timestamp": m.timestamp,
                    }
                    for m in r.matches
                ],
            }
            for r in results
        ]
    }


@app.get("/")
async def root():
    return {"message": "Welcome to ScholarChat API", "docs": "/docs"}
