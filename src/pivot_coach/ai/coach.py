"""
Suggestion Engine.

Combines retrieved context, contact facts and the local LLM to stream
coaching suggestions while the prospect is speaking.
"""

import logging
from typing import AsyncIterator, Iterable, Optional, Union

from ..errors import QueryFailed
from ..models.schemas import IntentResult, SuggestionContext
from .context_store import ContextStore, NullContextStore
from .intent import SUPPORTED_LANGUAGES, classify_intent
from .llm_client import OllamaClient

logger = logging.getLogger(__name__)


# System prompt for live sales coaching
COACHING_SYSTEM_PROMPT = """Tu es un coach commercial expert pour Pivot, un logiciel de gestion pour restaurants.

RÈGLES STRICTES:
- Réponses COURTES: 2-3 phrases maximum
- Focus sur la VALEUR pour le client
- Si objection → reformuler en opportunité
- Terminer par une question ouverte OU un call-to-action clair
- Ton professionnel mais chaleureux
- Ne jamais mentir ou exagérer"""

CONTACT_SECTION = """

CLIENT ACTUEL:
- Nom: {name}
- Entreprise: {company}
- Email: {email}
- Stade: {stage}"""

NOTES_SECTION = """

CONTEXTE ADDITIONNEL:
{notes}"""

HISTORY_SECTION = """

HISTORIQUE (notes précédentes):
{history}"""

USER_PROMPT = 'Le client dit: "{text}"'

SHORTEN_SYSTEM_PROMPT = "Tu raccourcis des textes. Réponse directe sans introduction."
SHORTEN_PROMPT = "Raccourcis cette réponse en 1 phrase max, garde l'essentiel:\n{text}"


class SuggestionEngine:
    """
    Streams grounded suggestions from the local LLM.

    Only the most recent generate() call of a session may emit tokens;
    an older stream stops at its next token once superseded.
    """

    def __init__(
        self,
        llm: OllamaClient,
        store: Union[ContextStore, NullContextStore, None] = None,
        rag_limit: int = 3,
        languages: Iterable[str] = SUPPORTED_LANGUAGES,
    ):
        """
        Initialize suggestion engine.

        Args:
            llm: Local inference client
            store: Context store for retrieval (None disables retrieval)
            rag_limit: Maximum snippets injected into the prompt
            languages: Keyword tables used by classify_intent
        """
        self.llm = llm
        self.store = store if store is not None else NullContextStore()
        self.rag_limit = rag_limit
        self.languages = tuple(languages)
        self._generations: dict[str, int] = {}

    # ============================================
    # Prompt building
    # ============================================

    def retrieve(self, text: str, owner_id: Optional[str]) -> list[str]:
        """RAG lookup; store failures degrade to no context."""
        try:
            results = self.store.search(text, owner_id=owner_id, limit=self.rag_limit)
        except QueryFailed as e:
            logger.warning(f"Context search failed, continuing without history: {e}")
            return []
        return [content for content, _score in results]

    def build_system_prompt(self, context: SuggestionContext) -> str:
        """Role rules + contact facts + session notes + retrieved snippets."""
        prompt = COACHING_SYSTEM_PROMPT

        if context.contact is not None:
            contact = context.contact
            prompt += CONTACT_SECTION.format(
                name=contact.full_name or contact.display_name,
                company=contact.company or "Inconnue",
                email=contact.email or "Inconnu",
                stage=contact.deal_stage or "Inconnu",
            )
            if contact.notes:
                prompt += "\n- Notes: " + " | ".join(contact.notes)

        if context.session_notes.strip():
            prompt += NOTES_SECTION.format(notes=context.session_notes.strip())

        snippets = context.rag_snippets[: self.rag_limit]
        if snippets:
            prompt += HISTORY_SECTION.format(history="\n".join(snippets))

        return prompt

    @staticmethod
    def build_user_prompt(text: str) -> str:
        return USER_PROMPT.format(text=text)

    # ============================================
    # Generation
    # ============================================

    def cancel(self, session_id: str) -> None:
        """Supersede any in-flight generation of a session."""
        self._generations[session_id] = self._generations.get(session_id, 0) + 1

    def end_session(self, session_id: str) -> None:
        """Forget a session; its in-flight stream stops at the next token."""
        self._generations.pop(session_id, None)

    def is_current(self, session_id: str, generation: int) -> bool:
        return self._generations.get(session_id) == generation

    async def generate(
        self,
        session_id: str,
        text: str,
        context: Optional[SuggestionContext] = None,
    ) -> AsyncIterator[str]:
        """
        Stream a suggestion for what the prospect just said.

        Args:
            session_id: Call session key (one active stream per session)
            text: Prospect utterance
            context: Contact, notes and optional precomputed snippets

        Yields:
            Decoded text fragments

        Raises:
            BackendUnavailable: LLM server not reachable
            RequestFailed: Request failed or timed out
        """
        self.cancel(session_id)
        generation = self._generations[session_id]

        context = context or SuggestionContext()
        if not context.rag_snippets:
            owner_id = context.contact.id if context.contact else None
            context = context.model_copy(update={"rag_snippets": self.retrieve(text, owner_id)})

        system_prompt = self.build_system_prompt(context)
        user_prompt = self.build_user_prompt(text)

        stream = self.llm.generate_stream(user_prompt, system_prompt)
        try:
            async for token in stream:
                if not self.is_current(session_id, generation):
                    logger.debug(f"Generation {generation} superseded in session {session_id}")
                    break
                yield token
        finally:
            await stream.aclose()

    async def shorten(self, text: str) -> str:
        """Compress a suggestion to one sentence; unchanged on any failure."""
        if not text.strip():
            return text

        try:
            shortened = await self.llm.generate(
                SHORTEN_PROMPT.format(text=text),
                system=SHORTEN_SYSTEM_PROMPT,
            )
        except Exception as e:
            logger.warning(f"Shorten failed, keeping original text: {e}")
            return text

        return shortened.strip() or text

    def classify_intent(self, text: str) -> IntentResult:
        return classify_intent(text, self.languages)
