"""
Tests for ChatOrchestrator event ordering and background persistence.
"""
import asyncio
import threading
import unittest

from app.models import ContextBundle, ContextConversation, ResearchContext, ResearchPaper
from app.rag.generation import build_system_prompt
from app.rag.orchestrator import ChatOrchestrator


class FakeRetriever:

    def __init__(self, bundle=None):
        self.bundle = bundle
        self.calls = []

    def get_context(self, messages, user_id, conversation_id=None, max_context_tokens=1500):
        self.calls.append((user_id, conversation_id, max_context_tokens))
        return self.bundle


class FakeAugmenter:

    def __init__(self, research=None):
        self.research = research or ResearchContext()
        self.calls = []

    def augment(self, query, num_papers=5, force=None):
        self.calls.append((query, num_papers, force))
        return self.research


class FailingAugmenter:

    def __init__(self, error):
        self.error = error

    def augment(self, query, num_papers=5, force=None):
        raise self.error


class FakeStore:

    def __init__(self, error=None):
        self.error = error
        self.saved = []
        self.saved_event = threading.Event()

    def save_conversation(self, user_id, messages, model, conversation_id=None):
        self.saved.append((user_id, messages, model, conversation_id))
        self.saved_event.set()
        if self.error:
            raise self.error


def fake_stream(tokens, error=None):
    captured = {}

    async def stream(system_prompt, history, model, use_local):
        captured["system_prompt"] = system_prompt
        captured["model"] = model
        for token in tokens:
            yield {"type": "token", "content": token}
        if error:
            raise error
        yield {"type": "end_of_response", "full_response": "".join(tokens)}

    return stream, captured


MESSAGES = [{"role": "user", "content": "What does research say about sleep?"}]
PAPER = ResearchPaper(paper_id="p1", title="Sleep study", url="https://example.org/p1", citation_count=3)


def run_chat(orchestrator, **kwargs):
    async def collect():
        events = [event async for event in orchestrator.stream_chat(MESSAGES, "user-1", **kwargs)]
        await orchestrator.wait_for_pending_saves()
        return events

    return asyncio.run(collect())


class TestStreamChat(unittest.TestCase):

    def test_event_order_and_save(self):
        stream, _ = fake_stream(["Sleep ", "matters [1]."])
        store = FakeStore()
        orchestrator = ChatOrchestrator(
            FakeRetriever(), FakeAugmenter(ResearchContext([PAPER], "[1] Sleep study")), store, stream_fn=stream
        )

        events = run_chat(orchestrator, conversation_id="conv-1", model="m")

        assert [e["type"] for e in events] == ["start", "token", "token", "complete"]
        assert events[0]["conversation_id"] == "conv-1"
        assert events[0]["papers"][0]["paperId"] == "p1"
        assert events[-1]["conversation_id"] == "conv-1"

        user_id, saved_messages, model, conversation_id = store.saved[0]
        assert (user_id, model, conversation_id) == ("user-1", "m", "conv-1")
        assert saved_messages == MESSAGES + [{"role": "assistant", "content": "Sleep matters [1]."}]

    def test_new_conversation_gets_one_id(self):
        stream, _ = fake_stream(["ok"])
        store = FakeStore()
        orchestrator = ChatOrchestrator(FakeRetriever(), FakeAugmenter(), store, stream_fn=stream)

        events = run_chat(orchestrator, model="m")

        assert events[0]["conversation_id"]
        assert events[0]["conversation_id"] == events[-1]["conversation_id"]
        assert store.saved[0][3] == events[0]["conversation_id"]

    def test_prompt_includes_research_and_history(self):
        bundle = ContextBundle(
            conversations=[ContextConversation("old", "Earlier chat", [{"role": "user", "content": "before"}], 0.9)],
            total_tokens=10,
        )
        stream, captured = fake_stream(["ok"])
        orchestrator = ChatOrchestrator(
            FakeRetriever(bundle), FakeAugmenter(ResearchContext([PAPER], "[1] Sleep study")), FakeStore(),
            stream_fn=stream,
        )

        run_chat(orchestrator, model="m")

        prompt = captured["system_prompt"]
        assert "[1] Sleep study" in prompt
        assert "### Conversation 1: Earlier chat" in prompt

    def test_research_options_are_forwarded(self):
        stream, _ = fake_stream(["ok"])
        augmenter = FakeAugmenter()
        retriever = FakeRetriever()
        orchestrator = ChatOrchestrator(retriever, augmenter, FakeStore(), stream_fn=stream)

        run_chat(orchestrator, conversation_id="conv-1", model="m", use_research=False, num_papers=7)

        assert augmenter.calls == [("What does research say about sleep?", 7, False)]
        assert retriever.calls[0][:2] == ("user-1", "conv-1")

    def test_context_failure_falls_back_to_base_prompt(self):
        stream, captured = fake_stream(["ok"])
        store = FakeStore()
        orchestrator = ChatOrchestrator(
            FakeRetriever(), FailingAugmenter(AttributeError("malformed paper")), store, stream_fn=stream
        )

        events = run_chat(orchestrator, conversation_id="conv-1", model="m")

        assert [e["type"] for e in events] == ["start", "token", "complete"]
        assert events[0]["papers"] == []
        assert captured["system_prompt"] == build_system_prompt()
        assert len(store.saved) == 1

    def test_generation_error_yields_error_and_skips_save(self):
        stream, _ = fake_stream(["partial"], error=RuntimeError("model crashed"))
        store = FakeStore()
        orchestrator = ChatOrchestrator(FakeRetriever(), FakeAugmenter(), store, stream_fn=stream)

        events = run_chat(orchestrator, model="m")

        assert [e["type"] for e in events] == ["start", "token", "error"]
        assert events[-1]["message"] == "model crashed"
        assert store.saved == []

    def test_save_failure_does_not_break_stream(self):
        stream, _ = fake_stream(["ok"])
        store = FakeStore(error=RuntimeError("database down"))
        orchestrator = ChatOrchestrator(FakeRetriever(), FakeAugmenter(), store, stream_fn=stream)

        with self.assertLogs("app.rag.orchestrator", level="ERROR") as logs:
            events = run_chat(orchestrator, model="m")

        assert events[-1]["type"] == "complete"
        assert len(store.saved) == 1
        assert any("Error saving conversation" in line for line in logs.output)
        assert orchestrator._background_tasks == set()


if __name__ == "__main__":
    unittest.main()
