"""
Tests for the style-learning accumulator: phrase diffing, the edit delta and
folding an approval into the voice profile.
"""

from datetime import datetime, timezone

import pytest

from ekoink.services.learning import (
    DEFAULT_AVG_LENGTH,
    MAX_AVOID_PHRASES,
    MAX_PREFERRED_PHRASES,
    MAX_RECENT_EXAMPLES,
    compute_edit_delta,
    diff_phrases,
    extract_phrases,
    fold_into_profile,
    moving_average_length,
    split_sentences,
)
from ekoink.services.style_analysis import parse_style_profile

NOW = datetime(2025, 3, 14, 12, 0, tzinfo=timezone.utc)


class TestPhraseExtraction:
    def test_split_sentences_drops_empty_pieces(self):
        assert split_sentences("Hi Sam! Thanks so much... See you soon?") == [
            "Hi Sam",
            "Thanks so much",
            "See you soon",
        ]

    def test_phrases_do_not_cross_sentences(self):
        phrases = extract_phrases("Thanks again. Enjoy the roof")
        assert "again. Enjoy" not in phrases
        assert "Thanks again" in phrases
        assert "Enjoy the" in phrases

    def test_short_phrases_are_noise(self):
        # "I am" and "am so" are under 6 characters
        assert extract_phrases("I am so glad") == ["so glad"]

    def test_added_and_removed_phrases(self):
        added, removed = diff_phrases(
            "Thank you for your purchase.",
            "Thank you for trusting us with your roof.",
        )
        assert "trusting us" in added
        assert "your purchase" in removed
        assert "Thank you" not in added

    def test_phrase_lists_capped_per_approval(self):
        original = "Alpha bravo charlie delta echo foxtrot golf hotel india juliet."
        final = "Kilo lima mike november oscar papa quebec romeo sierra tango."
        added, removed = diff_phrases(original, final)
        assert len(added) == 5
        assert len(removed) == 5
        assert added[0] == "Kilo lima"


class TestEditDelta:
    def test_records_lengths_and_counts(self):
        delta = compute_edit_delta("Hi Sam. Thanks!", "Hi Sam. Thanks for everything!", NOW)

        assert delta["was_edited"] is True
        assert delta["original_length"] == 15
        assert delta["final_length"] == 30
        assert delta["length_delta"] == 15
        assert delta["original_word_count"] == 3
        assert delta["final_word_count"] == 5
        assert delta["original_sentences"] == 2
        assert delta["final_sentences"] == 2
        assert delta["edit_timestamp"] == NOW.isoformat()

    def test_unedited_is_exact_string_equality(self):
        delta = compute_edit_delta("Thanks Sam.", "Thanks Sam.", NOW)
        assert delta["was_edited"] is False
        assert delta["added_phrases"] == []
        assert delta["removed_phrases"] == []

        # Whitespace differences count as an edit
        assert compute_edit_delta("Thanks Sam.", "Thanks Sam. ", NOW)["was_edited"] is True

    def test_empty_draft(self):
        delta = compute_edit_delta(None, "Written from scratch by the rep.", NOW)
        assert delta["was_edited"] is True
        assert delta["original_length"] == 0


class TestMovingAverage:
    def test_seeded_at_default(self):
        # round(290 * 0.8 + 400 * 0.2) = 312
        assert moving_average_length(None, 400) == 312

    def test_uses_existing_average(self):
        assert moving_average_length(300, 250) == 290

    def test_rounds_to_nearest(self):
        assert moving_average_length(301, 300) == 301
        assert moving_average_length(DEFAULT_AVG_LENGTH, 292) == 290

    def test_non_numeric_average_falls_back(self):
        assert moving_average_length("about 300", 400) == 312

    @pytest.mark.parametrize("old_avg", [float("nan"), float("inf"), "-Infinity"])
    def test_non_finite_average_falls_back(self, old_avg):
        assert moving_average_length(old_avg, 400) == 312

    def test_model_profile_with_nan_length_still_folds(self):
        profile = parse_style_profile('{"tone_description": "Warm", "avg_length": NaN}')
        delta = compute_edit_delta("Hi Sam.", "y" * 400, NOW)

        updated = fold_into_profile(profile, delta, NOW)

        assert updated["avg_length"] == 312
        assert updated["tone_description"] == "Warm"


class TestFoldIntoProfile:
    def test_edited_approval_updates_everything(self):
        delta = compute_edit_delta("x" * 10, "y" * 400, NOW)
        delta["added_phrases"] = ["so glad", "new roof"]
        delta["removed_phrases"] = ["your purchase"]

        profile = fold_into_profile({}, delta, NOW)

        assert profile["avg_length"] == 312
        assert profile["preferred_phrases"] == ["so glad", "new roof"]
        assert profile["avoid_phrases"] == ["your purchase"]
        assert profile["recent_examples"] == ["y" * 400]
        assert profile["notes_analyzed"] == 1
        assert profile["last_updated"] == NOW.isoformat()

    def test_unedited_approval_only_appends_exemplar(self):
        existing = {
            "preferred_phrases": ["so glad"],
            "avoid_phrases": ["your purchase"],
            "avg_length": 301,
            "recent_examples": ["first"],
            "notes_analyzed": 4,
        }
        delta = compute_edit_delta("Thanks Sam.", "Thanks Sam.", NOW)

        profile = fold_into_profile(existing, delta, NOW)

        assert profile["preferred_phrases"] == ["so glad"]
        assert profile["avoid_phrases"] == ["your purchase"]
        assert profile["avg_length"] == 301
        assert profile["recent_examples"] == ["first", "Thanks Sam."]
        assert profile["notes_analyzed"] == 5

    def test_does_not_mutate_input(self):
        existing = {"recent_examples": ["a"], "notes_analyzed": 1}
        fold_into_profile(existing, compute_edit_delta("a", "b", NOW), NOW)
        assert existing == {"recent_examples": ["a"], "notes_analyzed": 1}

    def test_lists_stay_capped(self):
        profile = {}
        for i in range(40):
            delta = compute_edit_delta(f"draft {i}", f"final {i}", NOW)
            delta["added_phrases"] = [f"added {i} {j}" for j in range(5)]
            delta["removed_phrases"] = [f"removed {i} {j}" for j in range(5)]
            profile = fold_into_profile(profile, delta, NOW)

            assert len(profile["preferred_phrases"]) <= MAX_PREFERRED_PHRASES
            assert len(profile["avoid_phrases"]) <= MAX_AVOID_PHRASES
            assert len(profile["recent_examples"]) <= MAX_RECENT_EXAMPLES

        # Most recent entries win
        assert profile["preferred_phrases"][-1] == "added 39 4"
        assert profile["avoid_phrases"][0] == "removed 38 0"
        assert profile["recent_examples"] == ["final 37", "final 38", "final 39"]
        assert profile["notes_analyzed"] == 40

    def test_repeated_phrase_kept_once_as_most_recent(self):
        profile = {"preferred_phrases": ["so glad", "new roof"]}
        delta = compute_edit_delta("a", "b", NOW)
        delta["added_phrases"] = ["so glad"]

        profile = fold_into_profile(profile, delta, NOW)

        assert profile["preferred_phrases"] == ["new roof", "so glad"]
