"""
Style learning from note approvals.

Every approval compares the AI draft with the text the rep approved and folds
the difference into the rep's voice profile (``users.tone_preferences``):

- phrases the rep added are reinforced (``preferred_phrases``, most recent 20)
- phrases the rep removed are discouraged (``avoid_phrases``, most recent 10)
- the target length follows an exponential moving average of approved lengths
- the last 3 approved notes are kept as exemplars

The phrase diff is a heuristic over two-word windows; only the capping,
averaging and counting rules are exact.
"""

import math
import re
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

DEFAULT_AVG_LENGTH = 290
AVG_LENGTH_DECAY = 0.8

MAX_PREFERRED_PHRASES = 20
MAX_AVOID_PHRASES = 10
MAX_RECENT_EXAMPLES = 3
MAX_PHRASES_PER_EDIT = 5
MIN_PHRASE_LENGTH = 6

_SENTENCE_BOUNDARY = re.compile(r"[.!?]+")


def split_sentences(text: str) -> List[str]:
    """Split on ``.``, ``!`` and ``?``; drop empty pieces."""
    return [s.strip() for s in _SENTENCE_BOUNDARY.split(text or "") if s.strip()]


def extract_phrases(text: str) -> List[str]:
    """Two-word sliding windows within each sentence, in order of appearance."""
    phrases = []
    for sentence in split_sentences(text):
        words = sentence.split()
        for first, second in zip(words, words[1:]):
            phrase = f"{first} {second}"
            if len(phrase) >= MIN_PHRASE_LENGTH:
                phrases.append(phrase)
    return phrases


def _unique(items: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


def diff_phrases(original: str, final: str) -> Tuple[List[str], List[str]]:
    """Phrases added and removed by the edit, each capped per approval."""
    original_lower = (original or "").lower()
    final_lower = (final or "").lower()

    added = _unique(p for p in extract_phrases(final) if p.lower() not in original_lower)
    removed = _unique(p for p in extract_phrases(original) if p.lower() not in final_lower)

    return added[:MAX_PHRASES_PER_EDIT], removed[:MAX_PHRASES_PER_EDIT]


def _word_count(text: str) -> int:
    return len(text.split())


def _sentence_count(text: str) -> int:
    return len([piece for piece in _SENTENCE_BOUNDARY.split(text) if piece])


def compute_edit_delta(original: str, final: str, now: datetime) -> Dict[str, Any]:
    """Audit record of one approval. Stored with the note and never updated."""
    original = original or ""
    was_edited = original != final

    if was_edited:
        added, removed = diff_phrases(original, final)
    else:
        added, removed = [], []

    return {
        "original_text": original,
        "final_text": final,
        "original_length": len(original),
        "final_length": len(final),
        "length_delta": len(final) - len(original),
        "was_edited": was_edited,
        "edit_timestamp": now.isoformat(),
        "original_word_count": _word_count(original),
        "final_word_count": _word_count(final),
        "original_sentences": _sentence_count(original),
        "final_sentences": _sentence_count(final),
        "added_phrases": added,
        "removed_phrases": removed,
    }


def _merge_recent(existing: Iterable[str], new: Iterable[str], cap: int) -> List[str]:
    """Union keeping each phrase once; newly seen phrases count as most recent."""
    new = _unique(new)
    merged = [p for p in _unique(existing) if p not in new] + new
    return merged[-cap:]


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def moving_average_length(old_avg: Optional[float], final_length: int) -> int:
    """``round(old * 0.8 + final * 0.2)``, seeded at 290 characters."""
    try:
        old_avg = float(old_avg) if old_avg else DEFAULT_AVG_LENGTH
    except (TypeError, ValueError):
        # Model-written profiles may carry a non-numeric avg_length
        old_avg = DEFAULT_AVG_LENGTH
    if not math.isfinite(old_avg):
        # json.loads accepts NaN and Infinity
        old_avg = DEFAULT_AVG_LENGTH
    return round_half_up(old_avg * AVG_LENGTH_DECAY + final_length * (1 - AVG_LENGTH_DECAY))


def fold_into_profile(
    profile: Optional[Dict[str, Any]], delta: Dict[str, Any], now: datetime
) -> Dict[str, Any]:
    """Return a new voice profile with one approval folded in.

    An unedited approval only appends the exemplar and bumps the counters.
    """
    updated = dict(profile or {})

    if delta["was_edited"]:
        updated["preferred_phrases"] = _merge_recent(
            updated.get("preferred_phrases") or [],
            delta["added_phrases"],
            MAX_PREFERRED_PHRASES,
        )
        updated["avoid_phrases"] = _merge_recent(
            updated.get("avoid_phrases") or [],
            delta["removed_phrases"],
            MAX_AVOID_PHRASES,
        )
        updated["avg_length"] = moving_average_length(
            updated.get("avg_length"), delta["final_length"]
        )

    examples = list(updated.get("recent_examples") or [])
    examples = examples[-(MAX_RECENT_EXAMPLES - 1):] + [delta["final_text"]]
    updated["recent_examples"] = examples

    updated["notes_analyzed"] = (updated.get("notes_analyzed") or 0) + 1
    updated["last_updated"] = now.isoformat()

    return updated
