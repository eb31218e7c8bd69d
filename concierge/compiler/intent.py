"""Intent detection for client messages.

The state machine only depends on the ``IntentClassifier`` protocol, so the
keyword matcher below can be swapped for a statistical model. Patterns cover
English and Spanish and err on the side of matching: a false positive only
lowers the offer threshold, it never unlocks generation by itself.
"""

from __future__ import annotations

import re
from typing import Protocol

from concierge.models.contracts import IntentFlags


class IntentClassifier(Protocol):
    def classify(self, text: str) -> IntentFlags: ...


_PATTERNS: dict[str, re.Pattern[str]] = {
    "preview_request": re.compile(
        r"quiero ver|want to see|how would|how will it look|cómo queda|como queda|preview"
        r"|visualiz|try.?on|probar|mockup|before.*book|antes.*reserv|antes.*agendar"
    ),
    "doubt": re.compile(
        r"no estoy segur|not sure|duda|doubt|unsure|maybe|quizás|quizas|tal vez"
        r"|pensando|thinking|consider|undecided"
    ),
    "urgency": re.compile(
        r"urgente|urgent|asap|pronto|soon|esta semana|this week|rápido|rapido|quick"
        r"|cuanto antes|cuánto antes"
    ),
    "comparison": re.compile(
        r"comparar|compare|vs|versus|diferencia|difference|cual es mejor|cuál es mejor"
        r"|which is better|opciones|options"
    ),
}


class KeywordIntentClassifier:
    """Regex matcher over the lower-cased message."""

    def __init__(self, patterns: dict[str, re.Pattern[str]] | None = None) -> None:
        self._patterns = patterns or _PATTERNS

    def classify(self, text: str) -> IntentFlags:
        lower = text.lower()
        return IntentFlags(
            **{flag: bool(pattern.search(lower)) for flag, pattern in self._patterns.items()}
        )


def detect_intent(text: str) -> IntentFlags:
    return KeywordIntentClassifier().classify(text)
