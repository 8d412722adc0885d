"""Filter recognizer hallucinations and repetition artifacts out of transcription segments.

Whisper-style recognizers invent subtitle credits and sign-offs on silence and
get stuck in loops on noisy audio. Three passes clean this up, in order:

1. known hallucinations: empty, punctuation-only, or matching a filler /
   credit / promotion / URL pattern;
2. internal repetition: some substring of 4+ characters occurs 3+ times;
3. near-duplicates: more than 80% character overlap with the last kept segment.
"""

import re
import logging
from typing import List

from ..models.transcription import Segment

logger = logging.getLogger(__name__)

HALLUCINATION_PATTERNS = [
    re.compile(r'^[，。！？、：；“”‘’"\'…\s.,!?;:\-]+$'),  # punctuation-only segments
    re.compile(r'字幕由.*提供'),
    re.compile(r'字幕.*制作'),
    re.compile(r'本字幕.*仅供'),
    re.compile(r'谢谢观看'),
    re.compile(r'感谢收看'),
    re.compile(r'感谢观看'),
    re.compile(r'请不吝点赞'),
    re.compile(r'订阅'),
    re.compile(r'thanks?\s*for\s*watching', re.IGNORECASE),
    re.compile(r'subtitles?\s*by', re.IGNORECASE),
    re.compile(r'please\s*subscribe', re.IGNORECASE),
    re.compile(r'https?://\S+'),  # URLs
    re.compile(r'www\.\S+'),
]

REPETITION_MIN_LENGTH = 4
REPETITION_MIN_COUNT = 3
SIMILARITY_THRESHOLD = 0.8


def is_known_hallucination(text: str) -> bool:
    """Check if a segment's text matches a known hallucination pattern."""
    trimmed = text.strip()
    if not trimmed:
        return True
    return any(pattern.search(trimmed) for pattern in HALLUCINATION_PATTERNS)


def has_internal_repetition(text: str,
                            min_length: int = REPETITION_MIN_LENGTH,
                            min_count: int = REPETITION_MIN_COUNT) -> bool:
    """Detect a substring of ``min_length``+ characters occurring ``min_count``+ times.

    Occurrences may overlap. Text shorter than ``min_length * min_count`` is
    never flagged.
    """
    trimmed = text.strip()
    if len(trimmed) < min_length * min_count:
        return False

    for length in range(min_length, len(trimmed) // min_count + 1):
        seen = set()
        for start in range(len(trimmed) - length + 1):
            sub = trimmed[start:start + length]
            if sub in seen:
                continue
            seen.add(sub)
            count = 0
            index = trimmed.find(sub)
            while index != -1:
                count += 1
                if count >= min_count:
                    return True
                index = trimmed.find(sub, index + 1)
    return False


def char_similarity(a: str, b: str) -> float:
    """Greedy character-multiset overlap, relative to the longer string.

    Each character of the shorter string consumes the first unused equal
    character of the longer one.
    """
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0

    longer, shorter = (a, b) if len(a) >= len(b) else (b, a)
    used = [False] * len(longer)
    matches = 0
    for ch in shorter:
        for i, other in enumerate(longer):
            if not used[i] and other == ch:
                used[i] = True
                matches += 1
                break
    return matches / len(longer)


def filter_hallucinations(segments: List[Segment]) -> List[Segment]:
    """Return the segments that survive all three passes, in their original order."""
    filtered: List[Segment] = []
    prev_text = ''

    for seg in segments:
        text = seg.text.strip()

        if is_known_hallucination(text):
            logger.debug(f"Dropping hallucinated segment: {text!r}")
            continue

        if has_internal_repetition(text):
            logger.debug(f"Dropping repetitive segment: {text[:40]!r}")
            continue

        if prev_text and char_similarity(text, prev_text) > SIMILARITY_THRESHOLD:
            logger.debug(f"Dropping near-duplicate segment: {text!r}")
            continue

        filtered.append(seg)
        prev_text = text

    logger.info(f"Hallucination filter kept {len(filtered)}/{len(segments)} segments")
    return filtered
