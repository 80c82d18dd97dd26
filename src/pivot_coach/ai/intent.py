"""
Rule-based intent classification.

Rules are checked in priority order and the first match wins, so the
order of INTENT_RULES matters: a sentence mentioning both price and a
closing word is a price question. Keyword sets are per language and
intentionally not translations of each other.
"""

from dataclasses import dataclass
from typing import Iterable

from ..models.schemas import Emotion, Intent, IntentResult


@dataclass(frozen=True)
class IntentRule:
    intent: Intent
    emotion: Emotion
    closing_probability: int
    keywords: dict[str, tuple[str, ...]]


INTENT_RULES: tuple[IntentRule, ...] = (
    IntentRule(
        Intent.PRICE_QUESTION, Emotion.NEUTRAL, 40,
        {
            "fr": ("prix", "combien", "coût", "tarif"),
            "en": ("price", "pricing", "how much", "cost"),
        },
    ),
    IntentRule(
        Intent.INTEREST, Emotion.POSITIVE, 70,
        {
            "fr": ("intéress", "parfait", "super", "génial"),
            "en": ("interested", "perfect", "great", "awesome"),
        },
    ),
    IntentRule(
        Intent.OBJECTION, Emotion.SKEPTICAL, 30,
        {
            "fr": ("mais", "cependant", "problème", "difficile"),
            "en": ("however", "problem", "difficult", "not sure"),
        },
    ),
    IntentRule(
        Intent.TECHNICAL_QUESTION, Emotion.NEUTRAL, 55,
        {
            "fr": ("quand", "comment", "déploie", "implément"),
            "en": ("how does", "how do", "deploy", "implement", "integrat"),
        },
    ),
    IntentRule(
        Intent.COMPETITION, Emotion.SKEPTICAL, 35,
        {
            "fr": ("concurrent", "autre solution", "déjà"),
            "en": ("competitor", "another solution", "already use"),
        },
    ),
    IntentRule(
        Intent.DEMO_REQUEST, Emotion.POSITIVE, 65,
        {
            "fr": ("essai", "tester", "démo"),
            "en": ("trial", "demo", "try it"),
        },
    ),
    IntentRule(
        Intent.CLOSING_SIGNAL, Emotion.POSITIVE, 85,
        {
            "fr": ("ok", "d'accord", "allons-y", "on signe"),
            "en": ("let's do it", "where do i sign", "sounds good"),
        },
    ),
)

SUPPORTED_LANGUAGES = ("fr", "en")


def classify_intent(text: str, languages: Iterable[str] = SUPPORTED_LANGUAGES) -> IntentResult:
    """
    Classify what the prospect just said.

    Args:
        text: Recognized utterance
        languages: Keyword tables to consult

    Returns:
        IntentResult of the first matching rule, else neutral/50
    """
    text_lower = text.lower()
    languages = tuple(languages)

    for rule in INTENT_RULES:
        for language in languages:
            keywords = rule.keywords.get(language, ())
            if any(kw in text_lower for kw in keywords):
                return IntentResult(
                    intent=rule.intent,
                    emotion=rule.emotion,
                    closing_probability=rule.closing_probability,
                )

    return IntentResult()
