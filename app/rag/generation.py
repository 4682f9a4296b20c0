"""
LLM-based generation for ScholarChat.

Builds the system prompt from research and conversation-history context and
streams completions from Ollama (local) or OpenAI (hosted).
"""
from typing import AsyncIterator, List, Optional
import time
import ollama
from openai import AsyncOpenAI

from app.config import OLLAMA_BASE_URL, OLLAMA_MODEL, OPENAI_MODEL, USE_LOCAL_LLM
from app.logging_config import get_logger

logger = get_logger(__name__)

BASE_SYSTEM_PROMPT = "You are a helpful assistant that can answer questions and help with tasks."

RESEARCH_INSTRUCTIONS = """
<Research Papers>
The following academic papers are relevant to the user's question. When you use
a finding from one of them, cite it inline with its number, e.g. [1] or [2].
Do not invent citations or cite numbers that are not listed below.

{paper_context}
</Research Papers>"""

RESEARCH_ANSWER_PROMPT = """You are a research assistant. Based on the provided research papers, give a comprehensive answer to the user's question.

Guidelines:
1. Synthesize information from multiple papers when possible
2. Cite papers using [1], [2], etc. format corresponding to the paper numbers provided
3. Highlight key findings, methodologies, and conclusions
4. Mention limitations or conflicting findings if they exist
5. Keep the response informative but accessible
6. Always reference specific papers when making claims

Research Papers Context:
{paper_context}

User Question: {query}"""


def build_system_prompt(research_context: str = "", history_context: str = "") -> str:
    """Base instructions, then the optional research block, then optional history."""
    prompt = BASE_SYSTEM_PROMPT
    if research_context:
        prompt += "\n" + RESEARCH_INSTRUCTIONS.format(paper_context=research_context)
    if history_context:
        prompt += "\n\n" + history_context
    return prompt


def build_messages(system_prompt: str, conversation_history: List[dict]) -> List[dict]:
    """System prompt followed by the history, stripped to role/content."""
    messages = [{'role': 'system', 'content': system_prompt}]
    for msg in conversation_history:
        messages.append({'role': msg['role'], 'content': msg['content']})
    return messages


def resolve_model(model: Optional[str], use_local: bool) -> str:
    if model:
        return model
    return OLLAMA_MODEL if use_local else OPENAI_MODEL


async def _stream_ollama(messages: List[dict], model: str) -> AsyncIterator[dict]:
    client = ollama.AsyncClient(host=OLLAMA_BASE_URL)
    stream = await client.chat(model=model, messages=messages, stream=True, keep_alive=-1)
    async for part in stream:
        thinking = getattr(part.message, "thinking", None)
        if thinking:
            yield {"type": "reasoning", "content": thinking}
        if part.message.content:
            yield {"type": "token", "content": part.message.content}


async def _stream_openai(messages: List[dict], model: str) -> AsyncIterator[dict]:
    client = AsyncOpenAI()
    stream = await client.chat.completions.create(model=model, messages=messages, stream=True)
    async for chunk in stream:
        if not chunk.choices:
            continue
        delta = chunk.choices[0].delta
        if delta.content:
            yield {"type": "token", "content": delta.content}


async def stream_completion(
    system_prompt: str,
    conversation_history: List[dict],
    model: Optional[str] = None,
    use_local: bool = USE_LOCAL_LLM,
) -> AsyncIterator[dict]:
    """
    Stream a chat completion.

    Yields dicts of type "token" and "reasoning" as they arrive, then a single
    {"type": "end_of_response", "full_response": ...}. Provider errors propagate.
    """
    messages = build_messages(system_prompt, conversation_history)
    model_name = resolve_model(model, use_local)
    logger.info(f"Using model: {model_name} ({'ollama' if use_local else 'openai'})")
    logger.debug(f"Messages:\n{messages}\n")

    stream = _stream_ollama if use_local else _stream_openai

    llm_start = time.time()
    first_token_ms = None
    full_response = ""
    async for event in stream(messages, model_name):
        if event["type"] == "token":
            if first_token_ms is None:
                first_token_ms = (time.time() - llm_start) * 1000
            full_response += event["content"]
        yield event

    llm_time = (time.time() - llm_start) * 1000
    logger.info(f"LLM generation time: {llm_time:.0f}ms (first token: {first_token_ms or 0:.0f}ms)")
    yield {"type": "end_of_response", "full_response": full_response}


async def generate_text(
    system_prompt: str,
    prompt: str,
    model: Optional[str] = None,
    use_local: bool = USE_LOCAL_LLM,
) -> str:
    """Non-streaming completion for a single prompt."""
    full_response = ""
    async for event in stream_completion(system_prompt, [{'role': 'user', 'content': prompt}], model, use_local):
        if event["type"] == "end_of_response":
            full_response = event["full_response"]
    return full_response
