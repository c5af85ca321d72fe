"""
Caption Extractor - turns a free-text vision model answer into 3 captions.

The model is asked to emit a "**STEP 3: CAPTIONS**" heading followed by a
fenced JSON array, but real answers drift: fences go missing, output gets
truncated, captions arrive as numbered lists or loose quotes. Extraction is
an ordered chain of pure strategies, most precise first. The first strategy
that yields at least 3 candidates wins and only its first 3 are kept.

If every strategy comes up short the result is the deterministic templated
fallback; a short list is never returned.
"""

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple

from services.caption_templates import generate_fallback_captions
from services.exceptions import ParseFailure

logger = logging.getLogger(__name__)

CAPTION_COUNT = 3
MIN_CAPTION_LENGTH = 20
MAX_CAPTION_LENGTH = 200
WINDOW_WORDS = 15
MIN_WINDOW_LENGTH = 30

PRIMARY_MARKER = "**STEP 3: CAPTIONS**"
ALTERNATE_MARKERS = [
    "STEP 3: CAPTIONS",
    "CAPTIONS:",
    "GENERATE CAPTIONS:",
    "CREATE CAPTIONS:",
]

# Words from the prompt scaffolding that disqualify a sliding-window candidate
STRUCTURAL_KEYWORDS = ("STEP", "CAPTIONS")

_CLOSED_FENCE = re.compile(r"```(?:json)?\s*\[([^\]]+)\]\s*```")
_OPEN_FENCE = re.compile(r"```(?:json)?\s*\[([^\]]+)")
_QUOTED = re.compile(r'"([^"]{%d,%d})"' % (MIN_CAPTION_LENGTH, MAX_CAPTION_LENGTH))
_ENUMERATED = re.compile(r'\[(\d+)\]\s*\*\*([^*]+)\*\*:\s*"([^"]+)"')
_NUMBERED_LINE = re.compile(r"^\d+\.\s*")
_BULLET_LINE = re.compile(r"^[-•]\s*")


class CaptionSource(str, Enum):
    MODEL = "model"
    FALLBACK = "fallback-template"


@dataclass(frozen=True)
class CaptionResult:
    """Exactly three captions plus where they came from."""

    captions: Tuple[str, str, str]
    source: CaptionSource

    def __post_init__(self):
        if len(self.captions) != CAPTION_COUNT:
            raise ValueError(f"CaptionResult needs exactly {CAPTION_COUNT} captions, got {len(self.captions)}")
        if not all(c and c.strip() for c in self.captions):
            raise ValueError("CaptionResult captions must be non-empty")

    @property
    def is_fallback(self) -> bool:
        return self.source == CaptionSource.FALLBACK

    def to_dict(self) -> dict:
        return {"captions": list(self.captions), "source": self.source.value}


def _within(text: str, low: int = MIN_CAPTION_LENGTH, high: int = MAX_CAPTION_LENGTH) -> bool:
    return low <= len(text) <= high


def _first_three(candidates: List[str]) -> Optional[List[str]]:
    if len(candidates) >= CAPTION_COUNT:
        return candidates[:CAPTION_COUNT]
    return None


def isolate_caption_section(text: str) -> str:
    """
    Restrict parsing to the text after the captions heading.

    Tries the primary marker, then the alternates. A marker with nothing
    after it counts as absent. Falls back to the whole text.
    """
    for marker in [PRIMARY_MARKER] + ALTERNATE_MARKERS:
        _, found, after = text.partition(marker)
        if found and after.strip():
            if marker != PRIMARY_MARKER:
                logger.debug(f"Using alternate caption section marker: {marker!r}")
            return after
    logger.debug("No caption section marker found, parsing entire response")
    return text


def _quoted_strings(block: str) -> List[str]:
    """Quoted strings in an array-like block; JSON decoding first, regex second."""
    try:
        values = json.loads(f"[{block}]")
        strings = [v.strip() for v in values if isinstance(v, str)]
        if strings:
            return [s for s in strings if _within(s)]
    except (json.JSONDecodeError, TypeError):
        pass
    return [m.strip() for m in _QUOTED.findall(block) if _within(m.strip())]


def from_fenced_block(text: str) -> Optional[List[str]]:
    """Captions inside a ```json [ ... ]``` block, closed or truncated."""
    for pattern in (_CLOSED_FENCE, _OPEN_FENCE):
        match = pattern.search(text)
        if not match:
            continue
        captions = _first_three(_quoted_strings(match.group(1)))
        if captions:
            return captions
    return None


def from_enumerated_labels(text: str) -> Optional[List[str]]:
    """Captions written as `[1] **Label**: "text"`."""
    matches = _ENUMERATED.findall(text)
    if len(matches) < CAPTION_COUNT:
        return None
    return _first_three([q.strip() for _, _, q in matches if _within(q.strip())])


def from_quoted_strings(text: str) -> Optional[List[str]]:
    """Any double-quoted run of caption length."""
    return _first_three([m.strip() for m in _QUOTED.findall(text) if _within(m.strip())])


def from_list_lines(text: str) -> Optional[List[str]]:
    """Numbered (`1.`) or bulleted (`-`, `•`) lines."""
    candidates = []
    for line in text.splitlines():
        stripped = line.strip()
        if _NUMBERED_LINE.match(stripped):
            caption = _NUMBERED_LINE.sub("", stripped, count=1).strip()
        elif _BULLET_LINE.match(stripped):
            caption = _BULLET_LINE.sub("", stripped, count=1).strip()
        else:
            continue
        if MIN_CAPTION_LENGTH <= len(caption) < MAX_CAPTION_LENGTH:
            candidates.append(caption)
    return _first_three(candidates)


def from_sliding_window(text: str) -> Optional[List[str]]:
    """Last resort: 15-word windows that read like a sentence, without overlap."""
    cleaned = text.replace("```", "").replace("[", "").replace("]", "")
    words = cleaned.split()
    candidates = []
    i = 0
    while i < len(words) - 10 and len(candidates) < CAPTION_COUNT:
        window = " ".join(words[i:i + WINDOW_WORDS]).strip()
        if (
            MIN_WINDOW_LENGTH < len(window) < MAX_CAPTION_LENGTH
            and not any(keyword in window for keyword in STRUCTURAL_KEYWORDS)
        ):
            candidates.append(window)
            i += WINDOW_WORDS
        else:
            i += 1
    return _first_three(candidates)


# Ordered most precise first
EXTRACTION_TIERS: List[Tuple[str, Callable[[str], Optional[List[str]]]]] = [
    ("fenced_block", from_fenced_block),
    ("enumerated_labels", from_enumerated_labels),
    ("quoted_strings", from_quoted_strings),
    ("list_lines", from_list_lines),
    ("sliding_window", from_sliding_window),
]


def extract_captions(raw_text: str) -> List[str]:
    """
    Extract exactly 3 captions from a model response.

    Args:
        raw_text: Free-text model output (may be empty or truncated)

    Returns:
        3 captions in source order, or an empty list when no tier succeeds
    """
    if not raw_text or not raw_text.strip():
        return []

    section = isolate_caption_section(raw_text)
    for name, tier in EXTRACTION_TIERS:
        captions = tier(section)
        if captions and len(captions) == CAPTION_COUNT:
            logger.info(f"✅ Extracted {CAPTION_COUNT} captions via {name}")
            return captions

    return []


def captions_from_response(raw_text: str, mood: str, username: str) -> CaptionResult:
    """
    Top-level entry: model captions when extractable, templates otherwise.

    Args:
        raw_text: Model output
        mood: Mood tag, used by the fallback
        username: Display name, used by the fallback

    Returns:
        CaptionResult with exactly 3 captions
    """
    captions = extract_captions(raw_text)
    if captions:
        return CaptionResult(captions=tuple(captions), source=CaptionSource.MODEL)

    failure = ParseFailure(len(raw_text or ""))
    logger.warning(f"⚠️ {failure}; using templates. Preview: {(raw_text or '')[:200]!r}")
    return fallback_result(mood, username)


def fallback_result(mood: str, username: str) -> CaptionResult:
    return CaptionResult(
        captions=tuple(generate_fallback_captions(mood, username)),
        source=CaptionSource.FALLBACK,
    )
