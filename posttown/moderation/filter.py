"""Profanity filter for post and comment text.

Disallowed words are matched as whole words, case-insensitively, and each
letter is replaced by the placeholder character so the sanitized text keeps
its original length and shape ("darn it" -> "**** it").
"""

import re
from collections.abc import Iterable
from typing import TYPE_CHECKING

import structlog


if TYPE_CHECKING:
    from posttown.config.settings import Settings


logger = structlog.get_logger(__name__)


# Default dictionary (basic list - extend through settings)
DEFAULT_WORDS = frozenset(
    {
        "arse",
        "arsehole",
        "ass",
        "asshole",
        "bastard",
        "bitch",
        "bollocks",
        "bullshit",
        "crap",
        "damn",
        "dick",
        "dickhead",
        "douche",
        "fuck",
        "fucker",
        "fucking",
        "goddamn",
        "motherfucker",
        "piss",
        "prick",
        "shit",
        "shitty",
        "slut",
        "twat",
        "wanker",
        "whore",
    }
)


class ModerationFilter:
    """Censors disallowed words in free text.

    ``clean`` is pure and total: it never raises, an empty dictionary or an
    empty string comes back unchanged, and the same input always produces
    the same output.
    """

    def __init__(
        self,
        words: Iterable[str] | None = None,
        placeholder: str = "*",
        enabled: bool = True,
    ) -> None:
        if len(placeholder) != 1:
            msg = "placeholder must be a single character"
            raise ValueError(msg)

        self.words = frozenset(
            w.strip().lower() for w in (DEFAULT_WORDS if words is None else words)
        ) - {""}
        self.placeholder = placeholder
        self.enabled = enabled
        self._pattern = self._compile(self.words)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "ModerationFilter":
        """Build the filter from the moderation settings group."""
        allowed = {w.lower() for w in settings.moderation_allowed_words}
        extra = {w.lower() for w in settings.moderation_extra_words}
        words = (DEFAULT_WORDS | extra) - allowed

        logger.debug(
            "moderation_filter_configured",
            enabled=settings.moderation_enabled,
            word_count=len(words),
        )
        return cls(
            words=words,
            placeholder=settings.moderation_placeholder,
            enabled=settings.moderation_enabled,
        )

    @staticmethod
    def _compile(words: frozenset[str]) -> re.Pattern[str] | None:
        if not words:
            return None
        # Longest first so "fucking" wins over "fuck" in the alternation
        alternation = "|".join(
            re.escape(w) for w in sorted(words, key=lambda w: (-len(w), w))
        )
        return re.compile(rf"(?<!\w)(?:{alternation})(?!\w)", re.IGNORECASE)

    def clean(self, text: str) -> str:
        """Return the text with every disallowed word masked."""
        if not self.enabled or self._pattern is None or not text:
            return text
        return self._pattern.sub(
            lambda match: self.placeholder * len(match.group(0)), text
        )
