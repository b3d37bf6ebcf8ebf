"""Content moderation."""

from posttown.moderation.filter import DEFAULT_WORDS, ModerationFilter


__all__ = ["DEFAULT_WORDS", "ModerationFilter"]
