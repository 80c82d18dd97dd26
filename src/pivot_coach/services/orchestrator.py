"""
Coach Orchestrator

Wires audio sources, transcription, retrieval and generation together
for one live call, and publishes everything through SuggestionState.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence, Union

from ..ai.coach import SuggestionEngine
from ..ai.context_store import ContextStore, NullContextStore
from ..ai.transcriber import TranscriptionEngine
from ..audio.capture import AudioSource, MergedAudioSource
from ..audio.whisper import SpeechRecognizer
from ..config.settings import AudioSettings, CoachSettings, WhisperSettings
from ..errors import (
    BackendUnavailable,
    CoachError,
    DeviceUnavailable,
    ModelUnavailable,
    OpenFailed,
    PermissionDenied,
    QueryFailed,
    RequestFailed,
)
from ..models.schemas import Contact, ContextDocument, Speaker, SuggestionContext
from .state import SuggestionState

logger = logging.getLogger(__name__)


BACKEND_DOWN_MESSAGE = "Ollama non disponible. Lance 'ollama serve' dans le terminal."
GENERATION_FAILED_MESSAGE = "Erreur de génération"


class OrchestratorPhase(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    LISTENING = "listening"


@dataclass
class Lane:
    """One audio source feeding one transcription engine."""

    source: AudioSource
    engine: TranscriptionEngine
    speaker: Speaker = Speaker.OTHER


def build_lanes(
    sources: Sequence[AudioSource],
    recognizer: SpeechRecognizer,
    audio: AudioSettings,
    whisper: WhisperSettings,
) -> list[Lane]:
    """
    Arrange sources according to the mix policy.

    merge: all sources share one buffer, labelled as the prospect.
    independent: one engine per source, labelled by the source's speaker.
    """
    if not sources:
        raise DeviceUnavailable("No audio source configured")

    def make_engine(name: str) -> TranscriptionEngine:
        return TranscriptionEngine(
            recognizer,
            sample_rate=audio.sample_rate,
            buffer_seconds=whisper.buffer_seconds,
            overlap_seconds=whisper.overlap_seconds,
            name=name,
        )

    if audio.mix_policy == "independent":
        return [Lane(source, make_engine(f"transcriber.{source.name}"), source.speaker) for source in sources]

    if audio.mix_policy != "merge":
        raise ValueError(f"Unknown mix policy: {audio.mix_policy}")

    if len(sources) == 1:
        source = sources[0]
    else:
        source = MergedAudioSource(sources, queue_size=audio.queue_size)
    return [Lane(source, make_engine("transcriber"), Speaker.OTHER)]


class CoachOrchestrator:
    """
    Session lifecycle for live coaching.

    New prospect utterances are debounced, then classified and sent for
    a suggestion; a newer utterance cancels the running generation.
    """

    def __init__(
        self,
        lanes: Sequence[Lane],
        suggestions: SuggestionEngine,
        store_factory: Callable[[], ContextStore],
        settings: Optional[CoachSettings] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            lanes: Audio source / transcription engine pairs
            suggestions: Suggestion engine (its store is replaced on initialize)
            store_factory: Opens the context store; OpenFailed degrades to no context
            settings: Coaching behaviour settings
        """
        self.lanes = list(lanes)
        self.suggestions = suggestions
        self.store_factory = store_factory
        self.settings = settings or CoachSettings()

        self.state = SuggestionState(log_size=self.settings.transcript_log_size)
        self.phase = OrchestratorPhase.IDLE
        self.store: Union[ContextStore, NullContextStore] = NullContextStore()
        self.session_id = uuid.uuid4().hex
        self.contact: Optional[Contact] = None
        self.session_notes = ""

        self._feed_tasks: list[asyncio.Task] = []
        self._debounce_task: Optional[asyncio.Task] = None
        self._generation_task: Optional[asyncio.Task] = None

        for lane in self.lanes:
            lane.engine.latest_transcript.subscribe(
                lambda text, lane=lane: self._on_transcript(lane, text)
            )
            lane.source.audio_level.subscribe(self.state.audio_level.set)

    @property
    def engines(self) -> list[TranscriptionEngine]:
        return [lane.engine for lane in self.lanes]

    @property
    def is_listening(self) -> bool:
        return self.phase == OrchestratorPhase.LISTENING

    @property
    def is_ready(self) -> bool:
        return self.state.is_ready.value

    # ============================================
    # Lifecycle
    # ============================================

    async def initialize(self) -> bool:
        """
        Load speech models, open the store, probe the LLM backend.

        Returns:
            True when ready to listen
        """
        if self.is_ready:
            return True

        self.phase = OrchestratorPhase.INITIALIZING
        self.state.status_message.set("Chargement du modèle de transcription...")

        try:
            for engine in self.engines:
                await engine.initialize()
        except ModelUnavailable as e:
            logger.error(f"Speech model unavailable: {e}")
            self.state.last_error.set(str(e))
            self.state.status_message.set("Modèle de transcription indisponible")
            self.phase = OrchestratorPhase.IDLE
            return False

        try:
            self.store = self.store_factory()
        except OpenFailed as e:
            logger.warning(f"Context store unavailable, continuing without history: {e}")
            self.store = NullContextStore()
        self.suggestions.store = self.store

        available = await self.suggestions.llm.is_available()
        self.state.backend_available.set(available)
        if available:
            logger.info("Ollama available")
        else:
            logger.warning("Ollama not available - run 'ollama serve'")

        self.phase = OrchestratorPhase.IDLE
        self.state.is_ready.set(True)
        self.state.status_message.set("Prêt")
        return True

    async def start_listening(self) -> bool:
        """
        Start a new session.

        Returns:
            True if listening (already or newly started)
        """
        if self.is_listening:
            return True

        if not self.is_ready:
            logger.warning("Not ready - call initialize() first")
            self.state.status_message.set("Pas prêt")
            return False

        self.state.reset()
        for engine in self.engines:
            await engine.reset()
        self.session_id = uuid.uuid4().hex

        started: list[AudioSource] = []
        try:
            for lane in self.lanes:
                await lane.source.start()
                started.append(lane.source)
        except (DeviceUnavailable, PermissionDenied) as e:
            logger.error(f"Audio capture failed: {e}")
            for source in started:
                source.stop()
            self.state.last_error.set(str(e))
            self.state.status_message.set("Capture audio impossible")
            return False

        self.phase = OrchestratorPhase.LISTENING
        self.state.is_listening.set(True)
        self._feed_tasks = [asyncio.create_task(self._feed(lane)) for lane in self.lanes]

        self.state.status_message.set("Écoute en cours")
        logger.info(f"Listening started (session {self.session_id})")
        return True

    async def stop_listening(self) -> None:
        """Stop capture and cancel all session tasks. Safe to call twice."""
        if not self.is_listening:
            return

        self.phase = OrchestratorPhase.IDLE
        self.state.is_listening.set(False)

        for lane in self.lanes:
            lane.source.stop()

        self.suggestions.end_session(self.session_id)
        tasks = list(self._feed_tasks)
        tasks += [t for t in (self._debounce_task, self._generation_task) if t is not None]
        await self._cancel_tasks(tasks)

        self._feed_tasks = []
        self._debounce_task = None
        self._generation_task = None
        self.state.is_generating.set(False)

        if self.settings.save_calls_to_history:
            self._save_call()

        self.state.status_message.set("Écoute arrêtée")
        logger.info(f"Listening stopped (session {self.session_id})")

    async def drain(self) -> None:
        """Wait for finite sources to run out and pending work to finish."""
        if self._feed_tasks:
            await asyncio.gather(*self._feed_tasks, return_exceptions=True)
        for attr in ("_debounce_task", "_generation_task"):
            task = getattr(self, attr)
            if task is not None and not task.done():
                await asyncio.gather(task, return_exceptions=True)
        # a debounce may have just started a generation
        if self._generation_task is not None and not self._generation_task.done():
            await asyncio.gather(self._generation_task, return_exceptions=True)

    async def reset_conversation(self) -> bool:
        """Clear the conversation; refused while listening."""
        if self.is_listening:
            logger.warning("Cannot reset while listening")
            return False

        self.state.reset()
        for engine in self.engines:
            await engine.reset()
        return True

    async def _cancel_tasks(self, tasks: list[asyncio.Task]) -> None:
        for task in tasks:
            if task.done():
                continue
            task.cancel()
            try:
                await asyncio.wait_for(task, timeout=self.settings.stop_timeout)
            except asyncio.CancelledError:
                pass
            except asyncio.TimeoutError:
                logger.warning(f"Task did not stop within {self.settings.stop_timeout}s")
            except Exception as e:
                logger.error(f"Task failed while stopping: {e}")

    async def _feed(self, lane: Lane) -> None:
        try:
            await lane.engine.process_stream(lane.source.chunks())
        except CoachError as e:
            logger.error(f"{lane.engine.name}: {e}")
            self.state.last_error.set(str(e))
            self.state.status_message.set("Transcription interrompue")

    # ============================================
    # Transcript handling
    # ============================================

    def _on_transcript(self, lane: Lane, text: str) -> None:
        if not text or not self.is_listening:
            return

        if lane.speaker == Speaker.SELF:
            self.state.append_segment(Speaker.SELF, text)
            return

        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = asyncio.create_task(self._debounce(text))

    async def _debounce(self, text: str) -> None:
        await asyncio.sleep(self.settings.debounce_seconds)
        self._dispatch(text)

    def _dispatch(self, text: str) -> None:
        """Record what the prospect said, classify it, start a suggestion."""
        self.state.append_segment(Speaker.OTHER, text)
        self.state.client_said.set(text)
        self.state.transcript.set(f"{self.state.transcript.value} {text}".strip())
        self.state.apply_intent(self.suggestions.classify_intent(text))
        self._start_generation(text)

    # ============================================
    # Generation
    # ============================================

    def _start_generation(self, text: str) -> asyncio.Task:
        previous = self._generation_task
        if previous is not None and not previous.done():
            previous.cancel()

        self._generation_task = asyncio.create_task(self._generate(text))
        return self._generation_task

    async def _generate(self, text: str) -> None:
        state = self.state
        state.is_generating.set(True)
        state.last_error.set(None)

        context = SuggestionContext(contact=self.contact, session_notes=self.session_notes)
        stream = self.suggestions.generate(self.session_id, text, context)
        started = False

        try:
            async for token in stream:
                if not started:
                    state.suggestion.set("")
                    started = True
                state.suggestion.set(state.suggestion.value + token)
            state.backend_available.set(True)
        except BackendUnavailable as e:
            logger.error(f"LLM backend unavailable: {e}")
            state.backend_available.set(False)
            self._report_generation_error(BACKEND_DOWN_MESSAGE, e)
        except RequestFailed as e:
            logger.error(f"Suggestion failed: {e}")
            self._report_generation_error(GENERATION_FAILED_MESSAGE, e)
        finally:
            await stream.aclose()
            if asyncio.current_task() is self._generation_task:
                state.is_generating.set(False)

    def _report_generation_error(self, message: str, error: Exception) -> None:
        current = self.state.suggestion.value
        indicator = f"⚠️ {message}"
        self.state.suggestion.set(f"{current}\n{indicator}" if current else indicator)
        self.state.last_error.set(str(error))

    def regenerate(self) -> Optional[asyncio.Task]:
        """Ask again for the last prospect statement."""
        text = self.state.client_said.value
        if not text:
            return None
        return self._start_generation(text)

    async def shorten_suggestion(self) -> str:
        """Replace the current suggestion with a one-sentence version."""
        current = self.state.suggestion.value
        if not current or self.state.is_generating.value:
            return current

        shortened = await self.suggestions.shorten(current)
        self.state.suggestion.set(shortened)
        return shortened

    # ============================================
    # Context
    # ============================================

    def select_contact(self, contact: Optional[Contact]) -> None:
        self.contact = contact
        logger.info(f"Contact selected: {contact.display_name if contact else 'none'}")

    def set_session_notes(self, notes: str) -> None:
        self.session_notes = notes

    def add_note(self, text: str) -> bool:
        """Store a note for the current contact (or session)."""
        text = text.strip()
        if not text:
            return False

        owner_id = self.contact.id if self.contact else self.session_id
        doc = ContextDocument(id=f"note-{uuid.uuid4().hex}", owner_id=owner_id, kind="note", content=text)
        try:
            return self.store.upsert(doc)
        except QueryFailed as e:
            logger.error(f"Failed to save note: {e}")
            self.state.last_error.set(str(e))
            return False

    def _save_call(self) -> None:
        segments = self.state.call_segments
        if not segments:
            return

        doc = ContextDocument(
            id=f"call-{self.session_id}",
            owner_id=self.contact.id if self.contact else None,
            kind="call_transcript",
            content="\n".join(segment.format_line() for segment in segments),
        )
        try:
            if self.store.upsert(doc):
                logger.info(f"Call transcript saved ({len(segments)} segments)")
        except QueryFailed as e:
            logger.error(f"Failed to save call transcript: {e}")
