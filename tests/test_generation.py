"""
Tests for system prompt assembly and message building.
"""
import asyncio
import unittest
from unittest.mock import patch

from app.rag import generation
from app.rag.generation import BASE_SYSTEM_PROMPT, build_messages, build_system_prompt, resolve_model


class TestBuildSystemPrompt(unittest.TestCase):

    def test_base_only(self):
        assert build_system_prompt() == BASE_SYSTEM_PROMPT

    def test_research_before_history(self):
        prompt = build_system_prompt("[1] Paper block", "## Relevant context from previous conversations")

        assert prompt.startswith(BASE_SYSTEM_PROMPT)
        assert "<Research Papers>" in prompt
        assert "[1] Paper block" in prompt
        assert prompt.index("[1] Paper block") < prompt.index("## Relevant context")

    def test_history_only(self):
        prompt = build_system_prompt(history_context="History block")

        assert "<Research Papers>" not in prompt
        assert prompt.endswith("History block")


class TestBuildMessages(unittest.TestCase):

    def test_system_first_and_fields_stripped(self):
        history = [
            {"role": "user", "content": "Hi", "timestamp": "2025-01-01"},
            {"role": "assistant", "content": "Hello"},
        ]

        messages = build_messages("SYSTEM", history)

        assert messages == [
            {"role": "system", "content": "SYSTEM"},
            {"role": "user", "content": "Hi"},
            {"role": "assistant", "content": "Hello"},
        ]


class TestResolveModel(unittest.TestCase):

    def test_explicit_model_wins(self):
        assert resolve_model("custom", True) == "custom"

    def test_provider_defaults(self):
        assert resolve_model(None, True) == generation.OLLAMA_MODEL
        assert resolve_model(None, False) == generation.OPENAI_MODEL


class TestStreamCompletion(unittest.TestCase):

    def test_accumulates_tokens_and_ends(self):
        async def fake_stream(messages, model):
            yield {"type": "reasoning", "content": "thinking..."}
            yield {"type": "token", "content": "Hello"}
            yield {"type": "token", "content": " world"}

        async def collect():
            return [event async for event in generation.stream_completion("SYS", [], "m", use_local=True)]

        with patch.object(generation, "_stream_ollama", fake_stream):
            events = asyncio.run(collect())

        assert [e["type"] for e in events] == ["reasoning", "token", "token", "end_of_response"]
        assert events[-1]["full_response"] == "Hello world"

    def test_generate_text_returns_full_response(self):
        async def fake_stream(messages, model):
            assert messages[-1] == {"role": "user", "content": "question"}
            yield {"type": "token", "content": "answer"}

        with patch.object(generation, "_stream_openai", fake_stream):
            result = asyncio.run(generation.generate_text("SYS", "question", use_local=False))

        assert result == "answer"


if __name__ == "__main__":
    unittest.main()
