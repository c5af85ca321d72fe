"""
Unit tests for the deterministic fallback captions.
"""

import pytest

from services.caption_templates import (
    DEFAULT_MOOD_EMOJI,
    generate_fallback_captions,
    get_mood_emoji,
    mood_hashtag,
    user_hashtag,
)


@pytest.mark.unit
class TestMoodEmoji:
    def test_keyword_match(self):
        assert get_mood_emoji("Travel / Adventure") == "🌍"
        assert get_mood_emoji("❄️ Winter / Snow") == "❄️"

    def test_case_insensitive(self):
        assert get_mood_emoji("GAMING") == "🎮"

    def test_first_match_wins(self):
        # "entertainment" is listed under music before gaming's own entry
        assert get_mood_emoji("Gaming / Entertainment") == "🎵"

    def test_default(self):
        assert get_mood_emoji("zzz") == DEFAULT_MOOD_EMOJI
        assert get_mood_emoji("") == DEFAULT_MOOD_EMOJI


@pytest.mark.unit
class TestHashtags:
    def test_mood_hashtag_strips_non_letters(self):
        assert mood_hashtag("😜 Fun / Playful") == "FunPlayful"

    def test_mood_hashtag_default(self):
        assert mood_hashtag("🔥🔥 / 123") == "Mood"

    def test_user_hashtag(self):
        assert user_hashtag("jane.doe!") == "janedoe"
        assert user_hashtag("") == "CaptionBot"


@pytest.mark.unit
class TestFallbackCaptions:
    def test_three_non_empty(self):
        captions = generate_fallback_captions("😜 Fun / Playful", "jdoe")
        assert len(captions) == 3
        assert all(c.strip() for c in captions)

    def test_embeds_emoji_and_tags(self):
        captions = generate_fallback_captions("🌍 Travel / Adventure", "jdoe")
        for caption in captions:
            assert "🌍" in caption
            assert "#TravelAdventure" in caption
            assert "#jdoe" in caption

    def test_deterministic(self):
        assert generate_fallback_captions("Calm", "u") == generate_fallback_captions("Calm", "u")

    def test_three_distinct_styles(self):
        captions = generate_fallback_captions("Calm", "u")
        assert len(set(captions)) == 3

    def test_mood_without_letters(self):
        captions = generate_fallback_captions("🔥🔥🔥", "u")
        assert all("#Mood" in c for c in captions)
