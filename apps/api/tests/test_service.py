"""
ChatService tests:
1. moderated turns never reach the model when blocked
2. load -> evaluate -> advance -> save ordering
3. per-session serialisation of concurrent turns
4. explicit topic switch / reset
"""

import asyncio

import pytest

from focustutor.llm import LlmResult
from focustutor.schemas import Phase, VerdictAction, VerdictReason
from focustutor.service import MODERATION_MODEL, ChatService
from focustutor.session_store import SessionNotFoundError


@pytest.fixture
def focused(service, store, focus_session):
    store.save(focus_session)
    return focus_session


class TestChat:

    @pytest.mark.asyncio
    async def test_blocked_message_never_calls_model(self, service, fake_generate, focused):
        turn = await service.chat(focused.session_id, "What is sex?")

        assert turn.verdict.action is VerdictAction.BLOCK
        assert turn.model == MODERATION_MODEL
        assert "Derivatives" in turn.reply
        fake_generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_allowed_message_calls_model_and_records_history(self, service, store, fake_generate, focused):
        turn = await service.chat(focused.session_id, "What is the derivative of x²?")

        assert turn.verdict.action is VerdictAction.ALLOW
        assert turn.reply == "Tutor answer"
        assert turn.model == "fake-model"
        fake_generate.assert_awaited_once()
        prompt, session = fake_generate.await_args.args
        assert prompt == "What is the derivative of x²?"
        assert session.current_topic == "Derivatives"
        assert store.load(focused.session_id).recent_messages == ["What is the derivative of x²?", "Tutor answer"]

    @pytest.mark.asyncio
    async def test_blocked_message_is_not_added_to_history(self, service, store, focused):
        await service.chat(focused.session_id, "What is sex?")
        assert store.load(focused.session_id).recent_messages == []

    @pytest.mark.asyncio
    async def test_greeting_reaches_model(self, service, fake_generate, focused):
        turn = await service.chat(focused.session_id, "hello")
        assert turn.verdict.action is VerdictAction.EXEMPT
        fake_generate.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_discovery_then_focus(self, service, fake_generate):
        session = service.create_session(subject="math")
        messages = ["Teach me about derivatives", "What's the weather like?", "Who won the football game?"]
        for message in messages:
            turn = await service.chat(session.session_id, message)
            assert turn.verdict.reason is VerdictReason.DISCOVERY

        assert turn.session.phase is Phase.FOCUS
        assert turn.session.current_topic == "derivatives"

        turn = await service.chat(session.session_id, "Who won the football game?")
        assert turn.verdict.action is VerdictAction.BLOCK
        assert fake_generate.await_count == 3

    @pytest.mark.asyncio
    async def test_history_is_bounded(self, store, gate, fake_generate, focused):
        service = ChatService(store=store, gate=gate, generate=fake_generate, history_size=4)
        for _ in range(3):
            await service.chat(focused.session_id, "derivatives")
        assert len(store.load(focused.session_id).recent_messages) == 4

    @pytest.mark.asyncio
    async def test_model_failure_keeps_advanced_session(self, service, store, fake_generate):
        session = service.create_session()
        fake_generate.side_effect = RuntimeError("model down")

        with pytest.raises(RuntimeError):
            await service.chat(session.session_id, "Teach me about derivatives")

        saved = store.load(session.session_id)
        assert saved.substantive_message_count == 1
        assert saved.current_topic == "derivatives"

    @pytest.mark.asyncio
    async def test_unknown_session(self, service):
        with pytest.raises(SessionNotFoundError):
            await service.chat("missing", "hello")

    @pytest.mark.asyncio
    async def test_off_topic_message_after_on_topic_turn(self, service, fake_generate, focused):
        fake_generate.return_value = LlmResult(
            content="The derivative of x squared is 2x in mathematics.", model="fake-model", stub=False
        )
        first = await service.chat(focused.session_id, "What is the derivative of x²?")
        assert first.verdict.action is VerdictAction.ALLOW

        second = await service.chat(focused.session_id, "Is it going to rain tomorrow in Paris?")

        assert second.verdict.action is VerdictAction.BLOCK
        assert second.model == MODERATION_MODEL
        assert fake_generate.await_count == 1


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_turns_for_one_session_are_serialised(self, store, gate):
        async def slow_generate(prompt, session, **kwargs):
            await asyncio.sleep(0.01)
            return LlmResult(content=f"re: {prompt}", model="fake", stub=False)

        service = ChatService(store=store, gate=gate, generate=slow_generate, history_size=100)
        session = service.create_session()
        messages = [f"limits part {i}" for i in range(5)]

        await asyncio.gather(*(service.chat(session.session_id, m) for m in messages))

        saved = store.load(session.session_id)
        assert saved.substantive_message_count == 5
        assert saved.phase is Phase.FOCUS
        assert len(saved.recent_messages) == 10

    @pytest.mark.asyncio
    async def test_sessions_do_not_share_locks(self, service):
        a = service.create_session()
        b = service.create_session()
        assert service.lock_for(a.session_id) is not service.lock_for(b.session_id)
        assert service.lock_for(a.session_id) is service.lock_for(a.session_id)

    @pytest.mark.asyncio
    async def test_unknown_sessions_leave_no_locks(self, service):
        for i in range(100):
            with pytest.raises(SessionNotFoundError):
                await service.chat(f"missing-{i}", "hello")
            with pytest.raises(SessionNotFoundError):
                await service.moderate(f"missing-{i}", "hello")
        assert service._locks == {}

    @pytest.mark.asyncio
    async def test_delete_releases_lock(self, service):
        session = service.create_session()
        service.lock_for(session.session_id)
        await service.delete_session(session.session_id)
        assert session.session_id not in service._locks


class TestModerate:

    @pytest.mark.asyncio
    async def test_moderate_persists_advance(self, service, store):
        session = service.create_session()
        verdict, updated = await service.moderate(session.session_id, "Teach me about derivatives")

        assert verdict.action is VerdictAction.ALLOW
        assert updated.substantive_message_count == 1
        assert store.load(session.session_id) == updated

    def test_preview_does_not_advance(self, service, store, focused):
        verdict = service.preview(focused.session_id, "What is sex?")
        assert verdict.action is VerdictAction.BLOCK
        assert store.load(focused.session_id) == focused


class TestStream:

    @pytest.mark.asyncio
    async def test_blocked_stream_yields_redirect_only(self, service, stream_calls, focused):
        verdict, chunks = await service.chat_stream(focused.session_id, "What is sex?")
        text = "".join([c async for c in chunks])

        assert verdict.action is VerdictAction.BLOCK
        assert "Derivatives" in text
        assert stream_calls == []

    @pytest.mark.asyncio
    async def test_allowed_stream_records_full_reply(self, service, store, stream_calls, focused):
        verdict, chunks = await service.chat_stream(focused.session_id, "derivatives")
        text = "".join([c async for c in chunks])

        assert verdict.action is VerdictAction.ALLOW
        assert text == "Tutor answer"
        assert stream_calls == ["derivatives"]
        assert store.load(focused.session_id).recent_messages == ["derivatives", "Tutor answer"]


class TestSessionManagement:

    def test_create_resolves_subject_and_cleans_input(self, service):
        session = service.create_session(subject="math", topic="  ", concepts=["chain rule", " "])
        assert session.subject == "Mathematics"
        assert session.current_topic is None
        assert session.concepts_covered == ["chain rule"]
        assert session.phase is Phase.DISCOVERY

    @pytest.mark.asyncio
    async def test_reset_returns_to_discovery(self, service, focused):
        session = await service.reset_session(focused.session_id)
        assert session.phase is Phase.DISCOVERY
        assert session.substantive_message_count == 0
        assert session.current_topic is None
        assert session.subject == "Mathematics"

    @pytest.mark.asyncio
    async def test_switch_topic_keeps_phase(self, service, focused):
        session = await service.switch_topic(focused.session_id, "Integrals", subject="math", concepts=["area"])
        assert session.current_topic == "Integrals"
        assert session.phase is Phase.FOCUS
        assert session.concepts_covered == ["area"]

        turn = await service.chat(focused.session_id, "What is the area under an integral?")
        assert turn.verdict.action is VerdictAction.ALLOW

    @pytest.mark.asyncio
    async def test_delete(self, service, store, focused):
        await service.delete_session(focused.session_id)
        with pytest.raises(SessionNotFoundError):
            store.load(focused.session_id)
