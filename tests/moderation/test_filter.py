"""Tests for the moderation filter."""

import pytest

from posttown.config import Settings
from posttown.moderation import DEFAULT_WORDS, ModerationFilter


@pytest.fixture
def moderation() -> ModerationFilter:
    return ModerationFilter(words={"darn", "heck"})


class TestClean:
    """Tests for ModerationFilter.clean."""

    def test_masks_each_letter(self, moderation: ModerationFilter) -> None:
        """A disallowed word is replaced letter for letter."""
        assert moderation.clean("darn it") == "**** it"

    def test_case_insensitive(self, moderation: ModerationFilter) -> None:
        assert moderation.clean("DaRn and HECK") == "**** and ****"

    def test_whole_words_only(self, moderation: ModerationFilter) -> None:
        """Words containing a disallowed word are left alone."""
        assert moderation.clean("darning heckler") == "darning heckler"

    def test_punctuation_boundaries(self, moderation: ModerationFilter) -> None:
        assert moderation.clean("oh, heck!") == "oh, ****!"

    def test_clean_text_unchanged(self, moderation: ModerationFilter) -> None:
        assert moderation.clean("a lovely day") == "a lovely day"

    def test_empty_text(self, moderation: ModerationFilter) -> None:
        assert moderation.clean("") == ""

    def test_empty_dictionary_passes_through(self) -> None:
        assert ModerationFilter(words=[]).clean("darn it") == "darn it"

    def test_disabled_passes_through(self) -> None:
        moderation = ModerationFilter(words={"darn"}, enabled=False)
        assert moderation.clean("darn it") == "darn it"

    def test_custom_placeholder(self) -> None:
        moderation = ModerationFilter(words={"darn"}, placeholder="#")
        assert moderation.clean("darn") == "####"

    def test_deterministic(self, moderation: ModerationFilter) -> None:
        text = "heck, darn, heck"
        assert moderation.clean(text) == moderation.clean(text)

    def test_default_dictionary(self) -> None:
        assert ModerationFilter().clean("well shit") == "well ****"

    def test_longest_match_wins(self) -> None:
        moderation = ModerationFilter(words={"fuck", "fucking"})
        assert moderation.clean("fucking") == "*******"

    def test_placeholder_must_be_single_character(self) -> None:
        with pytest.raises(ValueError, match="single character"):
            ModerationFilter(placeholder="**")


class TestFromSettings:
    def test_extra_and_allowed_words(self) -> None:
        settings = Settings(
            _env_file=None,
            moderation_extra_words=["Gosh"],
            moderation_allowed_words=["damn"],
        )
        moderation = ModerationFilter.from_settings(settings)

        assert "gosh" in moderation.words
        assert "damn" not in moderation.words
        assert moderation.clean("gosh damn") == "**** damn"

    def test_disabled_by_settings(self) -> None:
        settings = Settings(_env_file=None, moderation_enabled=False)
        moderation = ModerationFilter.from_settings(settings)

        assert moderation.enabled is False
        assert moderation.words == DEFAULT_WORDS
