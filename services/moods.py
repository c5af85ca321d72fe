"""
Mood catalogue offered by the Slack mood picker and the HTTP API.

Any free-text mood is accepted; these are the suggested ones.
"""

from typing import Dict, List

CORE_MOODS = [
    "😜 Fun / Playful",
    "🎭 Creative / Artistic",
    "💼 Professional / Business",
    "❤️ Romantic / Emotional",
    "🤖 Tech / Modern",
    "🌍 Travel / Adventure",
    "🍔 Food / Lifestyle",
    "🎵 Music / Entertainment",
    "🏃‍♂️ Fitness / Health",
    "🎨 Fashion / Style",
    "🏠 Home / Interior",
    "🐾 Pet / Animal",
    "🌱 Nature / Environment",
    "🎮 Gaming / Entertainment",
    "📚 Education / Learning",
    "🎪 Party / Celebration",
    "🧘‍♀️ Wellness / Mindfulness",
    "🚗 Automotive / Transport",
    "🏢 Architecture / Design",
    "📱 Social Media / Viral",
    "🎬 Movie / TV Show",
    "🏈 Sports / Athletics",
    "✈️ Aviation / Flight",
    "🚢 Marine / Ocean",
    "🏔️ Mountain / Hiking",
]

SEASONAL_MOODS = [
    "🏖️ Beach / Summer",
    "❄️ Winter / Snow",
    "🍂 Autumn / Fall",
    "🌸 Spring / Bloom",
    "🎄 Holiday / Christmas",
    "🎉 Celebration / Party",
    "🕯️ Cozy / Warm",
    "🗺️ Adventure / Explore",
    "✨ Mystical / Magical",
    "📷 Vintage / Retro",
    "🚀 Modern / Futuristic",
    "🎨 Artistic / Creative",
    "⚪ Minimalist / Simple",
    "💪 Bold / Strong",
    "👑 Elegant / Sophisticated",
    "😊 Casual / Relaxed",
    "🎯 Formal / Professional",
    "⚡ Energetic / Dynamic",
    "🧘‍♀️ Calm / Peaceful",
    "💡 Inspirational / Motivational",
    "🌟 Special / Unique",
    "🎭 Themed / Costume",
]

MAX_MOOD_LENGTH = 100


def available_moods() -> Dict:
    """Core and seasonal moods in the API response shape."""
    return {
        "core": [{"name": m, "value": m} for m in CORE_MOODS],
        "seasonal": [{"name": m, "value": m} for m in SEASONAL_MOODS],
        "total": len(CORE_MOODS) + len(SEASONAL_MOODS),
    }


def all_moods() -> List[str]:
    return CORE_MOODS + SEASONAL_MOODS
