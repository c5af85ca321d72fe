"""
Deterministic fallback captions.

Used whenever the vision model call fails or its answer cannot be parsed.
Output depends only on (mood, username), so the same request always yields
the same three captions.
"""

import re
from typing import List

DEFAULT_MOOD_EMOJI = "✨"
DEFAULT_MOOD_TAG = "Mood"

# Max characters of the mood name / username embedded in a template
MAX_MOOD_NAME = 40
MAX_USER_TAG = 30

# Ordered: first keyword hit wins, so "entertainment" resolves to music.
MOOD_EMOJIS = [
    (("fun", "playful"), "😜"),
    (("creative", "artistic"), "🎭"),
    (("professional", "business"), "💼"),
    (("romantic", "emotional", "love"), "❤️"),
    (("tech", "modern"), "🤖"),
    (("travel", "adventure"), "🌍"),
    (("food", "culinary", "lifestyle"), "🍔"),
    (("music", "entertainment"), "🎵"),
    (("fitness", "health"), "🏃‍♂️"),
    (("fashion", "style"), "🎨"),
    (("home", "interior"), "🏠"),
    (("pet", "animal"), "🐾"),
    (("nature", "environment", "outdoors"), "🌱"),
    (("gaming",), "🎮"),
    (("education", "learning"), "📚"),
    (("party", "celebration", "festive"), "🎪"),
    (("wellness", "mindfulness"), "🧘‍♀️"),
    (("automotive", "transport", "cars"), "🚗"),
    (("architecture", "design"), "🏢"),
    (("social media", "viral", "digital"), "📱"),
    (("movie", "tv"), "🎬"),
    (("sports", "athletics"), "🏈"),
    (("aviation", "flight", "flying"), "✈️"),
    (("marine", "ocean"), "🚢"),
    (("mountain", "hiking"), "🏔️"),
    (("beach", "summer"), "🏖️"),
    (("winter", "snow"), "❄️"),
    (("autumn", "fall"), "🍂"),
    (("spring", "bloom"), "🌸"),
    (("holiday", "christmas"), "🎄"),
    (("cozy", "warm", "comfort"), "🕯️"),
    (("mystical", "magical"), "✨"),
    (("vintage", "retro"), "📷"),
    (("futuristic", "contemporary"), "🚀"),
    (("minimalist", "simple"), "⚪"),
    (("bold", "strong", "dramatic"), "💪"),
    (("elegant", "sophisticated"), "👑"),
    (("casual", "relaxed"), "😊"),
    (("formal", "official"), "🎯"),
    (("energetic", "dynamic"), "⚡"),
    (("calm", "peaceful"), "😌"),
    (("inspirational", "motivational"), "💡"),
    (("special", "unique"), "🌟"),
    (("themed", "costume"), "🎭"),
    (("explore", "exploration"), "🗺️"),
]


def get_mood_emoji(mood: str) -> str:
    """Return the emoji for the first keyword found in the mood string."""
    mood_lower = (mood or "").lower()
    for keywords, emoji in MOOD_EMOJIS:
        if any(keyword in mood_lower for keyword in keywords):
            return emoji
    return DEFAULT_MOOD_EMOJI


def mood_name(mood: str) -> str:
    """Mood with everything but letters and spaces removed, whitespace collapsed."""
    letters = re.sub(r"[^a-zA-Z\s]", "", mood or "")
    name = " ".join(letters.split())[:MAX_MOOD_NAME].strip()
    return name


def mood_hashtag(mood: str) -> str:
    """Hashtag body built from the letters of the mood, e.g. 'FunPlayful'."""
    tag = re.sub(r"[^a-zA-Z]", "", mood_name(mood))
    return tag or DEFAULT_MOOD_TAG


def user_hashtag(username: str) -> str:
    tag = re.sub(r"[^A-Za-z0-9_]", "", username or "")[:MAX_USER_TAG]
    return tag or "CaptionBot"


def generate_fallback_captions(mood: str, username: str) -> List[str]:
    """
    Build three templated captions: visual, emotional and aspirational.

    Args:
        mood: Mood tag chosen by the user (may contain emoji and slashes)
        username: Display name used as the closing hashtag

    Returns:
        Exactly three non-empty caption strings
    """
    emoji = get_mood_emoji(mood)
    name = mood_name(mood) or DEFAULT_MOOD_TAG
    tag = mood_hashtag(mood)
    user_tag = user_hashtag(username)

    return [
        # Visual description
        f"📸 {emoji} Every detail in this {name} shot pulls you in, from the light to the framing. "
        f"#{tag} #VisualStory #{user_tag}",
        # Emotional
        f"💫 {emoji} Some moments just feel {name}, and this one stays with you. "
        f"#{tag} #AllTheFeels #{user_tag}",
        # Aspirational
        f"🚀 {emoji} Living the {name} life one frame at a time, no filter needed. "
        f"#{tag} #GoalsUnlocked #{user_tag}",
    ]
