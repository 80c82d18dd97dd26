"""Tests for the coach orchestrator."""

from __future__ import annotations

import asyncio

import numpy as np
import pytest

from conftest import FakeLLM, FakeRecognizer
from pivot_coach.ai.coach import SuggestionEngine
from pivot_coach.ai.context_store import NullContextStore
from pivot_coach.ai.transcriber import TranscriptionEngine
from pivot_coach.audio.capture import AudioChunk, AudioSource, MergedAudioSource
from pivot_coach.config.settings import AudioSettings, CoachSettings, WhisperSettings
from pivot_coach.errors import BackendUnavailable, DeviceUnavailable, OpenFailed
from pivot_coach.models.schemas import Contact, Intent, Speaker
from pivot_coach.services.orchestrator import CoachOrchestrator, Lane, build_lanes


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class ScriptedSource(AudioSource):
    """Emits a fixed number of silent chunks each time it starts."""

    def __init__(self, chunk_count: int = 0, speaker: Speaker = Speaker.OTHER, name: str = "scripted", fail: bool = False):
        super().__init__(name, speaker)
        self.chunk_count = chunk_count
        self.fail = fail
        self.running = False
        self.starts = 0
        self.stops = 0

    @property
    def is_running(self) -> bool:
        return self.running

    async def start(self) -> None:
        if self.fail:
            raise DeviceUnavailable("no such device")
        queue = self._new_queue()
        for _ in range(self.chunk_count):
            self._enqueue(AudioChunk.from_samples(np.zeros(1600, dtype=np.float32), 16000), queue)
        self._enqueue(None, queue)
        self.running = True
        self.starts += 1

    def stop(self) -> None:
        self.running = False
        self.stops += 1


def _orchestrator(
    source: AudioSource,
    recognizer: FakeRecognizer,
    llm: FakeLLM,
    store_factory=NullContextStore,
    **settings,
) -> CoachOrchestrator:
    settings.setdefault("debounce_seconds", 0.01)
    return CoachOrchestrator(
        [Lane(source, TranscriptionEngine(recognizer), Speaker.OTHER)],
        SuggestionEngine(llm),
        store_factory,
        CoachSettings(**settings),
    )


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------


def test_initialize_degrades_when_store_fails(fake_recognizer, fake_llm) -> None:
    def broken_store():
        raise OpenFailed("disk full")

    orchestrator = _orchestrator(ScriptedSource(), fake_recognizer, fake_llm, broken_store)

    assert asyncio.run(orchestrator.initialize()) is True
    assert isinstance(orchestrator.store, NullContextStore)
    assert orchestrator.state.is_ready.value is True
    assert orchestrator.state.backend_available.value is True


def test_initialize_fails_without_speech_model(fake_llm) -> None:
    orchestrator = _orchestrator(ScriptedSource(), FakeRecognizer(fail_load=True), fake_llm)

    async def main():
        ready = await orchestrator.initialize()
        started = await orchestrator.start_listening()
        return ready, started

    assert asyncio.run(main()) == (False, False)
    assert orchestrator.state.last_error.value is not None


def test_start_listening_reports_device_error(fake_recognizer, fake_llm) -> None:
    orchestrator = _orchestrator(ScriptedSource(fail=True), fake_recognizer, fake_llm)

    async def main():
        await orchestrator.initialize()
        return await orchestrator.start_listening()

    assert asyncio.run(main()) is False
    assert not orchestrator.is_listening
    assert "no such device" in orchestrator.state.last_error.value


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


def test_utterance_flows_to_suggestion_and_history(store, fake_llm) -> None:
    recognizer = FakeRecognizer(["Quel est le prix ?"])
    orchestrator = _orchestrator(ScriptedSource(15), recognizer, fake_llm, lambda: store)
    orchestrator.select_contact(Contact(id="c1", last_name="Roux"))

    async def main():
        await orchestrator.initialize()
        await orchestrator.start_listening()
        await orchestrator.drain()
        await orchestrator.stop_listening()

    asyncio.run(main())
    state = orchestrator.state

    assert state.client_said.value == "Quel est le prix ?"
    assert state.intent.value == Intent.PRICE_QUESTION
    assert state.closing_probability.value == 40
    assert state.suggestion.value == "Bonne question."
    assert state.is_generating.value is False
    assert [s.speaker for s in state.transcript_log.value] == [Speaker.OTHER]

    saved = store.get(f"call-{orchestrator.session_id}")
    assert saved.kind == "call_transcript"
    assert saved.owner_id == "c1"
    assert "Client: Quel est le prix ?" in saved.content


def test_debounce_keeps_only_latest_utterance(fake_llm) -> None:
    recognizer = FakeRecognizer(["premier texte", "second texte"])
    orchestrator = _orchestrator(ScriptedSource(25), recognizer, fake_llm, debounce_seconds=0.2)

    async def main():
        await orchestrator.initialize()
        await orchestrator.start_listening()
        await orchestrator.drain()
        await orchestrator.stop_listening()

    asyncio.run(main())

    assert orchestrator.state.client_said.value == "second texte"
    assert [s.text for s in orchestrator.state.transcript_log.value] == ["second texte"]
    assert len(fake_llm.prompts) == 1


def test_second_generation_cancels_first(fake_recognizer) -> None:
    llm = FakeLLM(tokens=["un ", "deux ", "trois"], delay=0.05)
    orchestrator = _orchestrator(ScriptedSource(), fake_recognizer, llm)

    async def main():
        await orchestrator.initialize()
        orchestrator.state.client_said.set("Quel est le prix ?")
        first = orchestrator.regenerate()
        await asyncio.sleep(0.07)
        second = orchestrator.regenerate()
        await asyncio.gather(first, return_exceptions=True)
        await second
        return first, second

    first, second = asyncio.run(main())

    assert first.cancelled()
    assert not second.cancelled()
    assert orchestrator.state.suggestion.value == "un deux trois"
    assert orchestrator.state.is_generating.value is False


def test_generation_error_keeps_prior_suggestion(fake_recognizer) -> None:
    llm = FakeLLM(error=BackendUnavailable("connection refused"))
    orchestrator = _orchestrator(ScriptedSource(), fake_recognizer, llm)

    async def main():
        await orchestrator.initialize()
        orchestrator.state.suggestion.set("Ancienne suggestion")
        orchestrator.state.client_said.set("prix")
        await orchestrator.regenerate()

    asyncio.run(main())
    state = orchestrator.state

    assert state.suggestion.value.startswith("Ancienne suggestion\n⚠️")
    assert state.last_error.value == "connection refused"
    assert state.backend_available.value is False
    assert state.is_generating.value is False


def test_stop_then_start_yields_clean_session(fake_llm) -> None:
    recognizer = FakeRecognizer(["Quel est le prix ?"])
    source = ScriptedSource(15)
    orchestrator = _orchestrator(source, recognizer, fake_llm)

    async def main():
        await orchestrator.initialize()
        await orchestrator.start_listening()
        await orchestrator.drain()
        first_session = orchestrator.session_id
        await orchestrator.stop_listening()
        await orchestrator.stop_listening()
        await orchestrator.start_listening()
        snapshot = (
            orchestrator.session_id != first_session,
            orchestrator.state.suggestion.value,
            orchestrator.state.transcript_log.value,
            orchestrator.state.closing_probability.value,
            orchestrator.state.intent.value,
            orchestrator.lanes[0].engine.full_transcript,
        )
        await orchestrator.stop_listening()
        return snapshot

    assert asyncio.run(main()) == (True, "", [], 50, None, "")
    assert source.starts == 2
    assert source.stops == 2


def test_stop_during_generation_leaves_no_stale_tokens() -> None:
    llm = FakeLLM(tokens=["vieux ", "conseil ", "périmé"], delay=0.1)
    source = ScriptedSource(15)
    orchestrator = _orchestrator(source, FakeRecognizer(["Quel est le prix ?"]), llm)

    async def main():
        await orchestrator.initialize()
        await orchestrator.start_listening()
        for _ in range(200):
            if llm.prompts:
                break
            await asyncio.sleep(0.01)
        first_session = orchestrator.session_id

        seen: list[str] = []
        orchestrator.state.suggestion.subscribe(seen.append)
        await orchestrator.stop_listening()
        closed_at_stop = llm.closed_streams

        source.chunk_count = 0
        await orchestrator.start_listening()
        await asyncio.sleep(0.4)
        final = orchestrator.state.suggestion.value
        await orchestrator.stop_listening()
        return seen, final, closed_at_stop, first_session

    seen, final, closed_at_stop, first_session = asyncio.run(main())

    assert len(llm.prompts) == 1
    assert closed_at_stop == 1
    assert final == ""
    assert not any(word in value for value in seen for word in ("vieux", "conseil", "périmé"))
    assert first_session not in orchestrator.suggestions._generations


def test_reset_refused_while_listening(fake_recognizer, fake_llm) -> None:
    orchestrator = _orchestrator(ScriptedSource(), fake_recognizer, fake_llm)

    async def main():
        await orchestrator.initialize()
        await orchestrator.start_listening()
        refused = await orchestrator.reset_conversation()
        await orchestrator.stop_listening()
        accepted = await orchestrator.reset_conversation()
        return refused, accepted

    assert asyncio.run(main()) == (False, True)


def test_self_lane_only_logs(fake_llm) -> None:
    mic = ScriptedSource(15, speaker=Speaker.SELF, name="mic")
    orchestrator = CoachOrchestrator(
        [Lane(mic, TranscriptionEngine(FakeRecognizer(["Je vous explique le prix"])), Speaker.SELF)],
        SuggestionEngine(fake_llm),
        NullContextStore,
        CoachSettings(debounce_seconds=0.01),
    )

    async def main():
        await orchestrator.initialize()
        await orchestrator.start_listening()
        await orchestrator.drain()
        await orchestrator.stop_listening()

    asyncio.run(main())

    assert [s.speaker for s in orchestrator.state.transcript_log.value] == [Speaker.SELF]
    assert orchestrator.state.client_said.value == ""
    assert fake_llm.prompts == []


# ---------------------------------------------------------------------------
# Context actions
# ---------------------------------------------------------------------------


def test_add_note_and_shorten(store, fake_recognizer, fake_llm) -> None:
    orchestrator = _orchestrator(ScriptedSource(), fake_recognizer, fake_llm, lambda: store)

    async def main():
        await orchestrator.initialize()
        orchestrator.select_contact(Contact(id="c9"))
        stored = orchestrator.add_note("Veut un tarif groupe")
        orchestrator.state.suggestion.set("Une réponse beaucoup trop longue.")
        shortened = await orchestrator.shorten_suggestion()
        return stored, shortened

    stored, shortened = asyncio.run(main())

    assert stored is True
    assert store.search("tarif", owner_id="c9")[0][0] == "Veut un tarif groupe"
    assert shortened == "Court."
    assert orchestrator.state.suggestion.value == "Court."


# ---------------------------------------------------------------------------
# Lanes
# ---------------------------------------------------------------------------


def test_build_lanes_merge_policy(fake_recognizer) -> None:
    sources = [ScriptedSource(speaker=Speaker.SELF, name="mic"), ScriptedSource(name="system")]

    lanes = build_lanes(sources, fake_recognizer, AudioSettings(mix_policy="merge"), WhisperSettings())

    assert len(lanes) == 1
    assert isinstance(lanes[0].source, MergedAudioSource)
    assert lanes[0].speaker == Speaker.OTHER


def test_build_lanes_independent_policy(fake_recognizer) -> None:
    sources = [ScriptedSource(speaker=Speaker.SELF, name="mic"), ScriptedSource(name="system")]

    lanes = build_lanes(sources, fake_recognizer, AudioSettings(mix_policy="independent"), WhisperSettings())

    assert [lane.speaker for lane in lanes] == [Speaker.SELF, Speaker.OTHER]
    assert lanes[0].engine is not lanes[1].engine


def test_build_lanes_rejects_unknown_policy(fake_recognizer) -> None:
    with pytest.raises(ValueError):
        build_lanes([ScriptedSource()], fake_recognizer, AudioSettings(mix_policy="stereo"), WhisperSettings())
