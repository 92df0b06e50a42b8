"""
Tests for the confidence calculator.
"""

import math
import random
from dataclasses import fields, replace

import pytest

from filmtrust.scoring import (
    ConfidenceInputs,
    calculate_batch_confidence,
    calculate_confidence,
    cast_confidence,
    confidence_statistics,
    confidence_tier,
    image_confidence,
    metadata_confidence,
    review_confidence,
    round2,
    validation_confidence,
)

PRESENCE_FIELDS = [
    f.name for f in fields(ConfidenceInputs) if f.name.startswith("has_")
] + ["is_verified"]


def random_inputs(rng: random.Random) -> ConfidenceInputs:
    """Arbitrary inputs, including out-of-range numbers and missing values."""

    def maybe_float(low=-0.5, high=1.5):
        return None if rng.random() < 0.2 else rng.uniform(low, high)

    kwargs = {name: rng.random() < 0.5 for name in PRESENCE_FIELDS}
    kwargs.update(
        tmdb_id=rng.choice([None, 101, ""]),
        imdb_id=rng.choice([None, "tt0000001"]),
        wikidata_id=rng.choice([None, "Q1"]),
        data_sources=tuple(rng.sample(["tmdb", "imdb", "wikipedia", "omdb", "wikidata", "idlebrain", "gulte"],
                                      rng.randint(0, 7))),
        poster_confidence=maybe_float(),
        completeness_score=maybe_float(),
        consensus_score=maybe_float(),
        data_confidence=maybe_float(-1.0, 2.0),
        supporting_cast_count=rng.randint(-3, 10),
        review_count=rng.randint(-3, 10),
        validation_source_count=rng.randint(-3, 6),
        manual_overrides=rng.randint(-3, 12),
    )
    return ConfidenceInputs(**kwargs)


class TestEmptyInputs:
    """Records with no signals at all."""

    def test_score_and_tier(self):
        result = calculate_confidence(ConfidenceInputs())
        assert result.confidence_score == pytest.approx(0.0)
        assert result.tier == "very_low"

    def test_missing_flags(self):
        flags = calculate_confidence(ConfidenceInputs()).flags
        for flag in ["missing_core_cast", "missing_synopsis", "missing_poster",
                     "missing_release_year", "no_external_ids"]:
            assert flag in flags

    def test_zero_denominators_are_zero_not_nan(self):
        inputs = ConfidenceInputs()
        for fn in (cast_confidence, metadata_confidence, image_confidence,
                   review_confidence, validation_confidence):
            value = fn(inputs)
            assert not math.isnan(value)
            assert value == 0.0


class TestSubScores:
    """Each sub-score in isolation."""

    def test_cast_only_counts_applicable_criteria(self):
        assert cast_confidence(ConfidenceInputs(has_hero=True)) == pytest.approx(1.0)
        assert cast_confidence(ConfidenceInputs(has_hero=True, has_producer=True)) == pytest.approx(1.0)

    def test_supporting_cast_needs_three(self):
        assert cast_confidence(ConfidenceInputs(supporting_cast_count=2)) == 0.0
        assert cast_confidence(ConfidenceInputs(supporting_cast_count=3)) == pytest.approx(1.0)

    def test_metadata_blends_completeness(self):
        assert metadata_confidence(ConfidenceInputs(completeness_score=0.4)) == pytest.approx(0.4)
        assert metadata_confidence(ConfidenceInputs(completeness_score=0.0)) == 0.0

    def test_low_completeness_never_lowers_metadata(self):
        """A completeness below the record's own metadata ratio is ignored."""
        base = ConfidenceInputs(has_hero=True, has_release_year=True)
        with_completeness = replace(base, completeness_score=0.4)
        assert metadata_confidence(with_completeness) == pytest.approx(1.0)
        assert (calculate_confidence(with_completeness).confidence_score
                >= calculate_confidence(base).confidence_score)

    def test_image_prefers_explicit_poster_confidence(self):
        assert image_confidence(ConfidenceInputs(poster_confidence=0.9)) == pytest.approx(0.9)
        assert image_confidence(ConfidenceInputs(has_poster=True)) == pytest.approx(0.7)
        assert image_confidence(ConfidenceInputs(has_poster=True, poster_confidence=0.4)) == pytest.approx(0.4)
        assert image_confidence(ConfidenceInputs()) == 0.0

    def test_review_is_capped(self):
        assert review_confidence(ConfidenceInputs(has_our_rating=True)) == pytest.approx(0.5)
        full = ConfidenceInputs(has_our_rating=True, has_reviews=True, review_count=5)
        assert review_confidence(full) == pytest.approx(1.0)

    def test_validation_banding(self):
        assert validation_confidence(ConfidenceInputs(validation_source_count=1)) == pytest.approx(0.10)
        assert validation_confidence(ConfidenceInputs(validation_source_count=2)) == pytest.approx(0.25)
        assert validation_confidence(ConfidenceInputs(validation_source_count=3)) == pytest.approx(0.40)
        capped = ConfidenceInputs(validation_source_count=4, consensus_score=1.0)
        assert validation_confidence(capped) == pytest.approx(1.0)


class TestComposite:
    """Weighted composite and post-adjustments."""

    def test_high_confidence_scenario(self):
        """Core cast, metadata, poster, rating, verification and two sources."""
        inputs = ConfidenceInputs(
            has_hero=True,
            has_director=True,
            has_synopsis=True,
            has_release_year=True,
            has_genres=True,
            has_poster=True,
            poster_confidence=0.7,
            has_our_rating=True,
            is_verified=True,
            data_sources=("TMDB", "Wikipedia"),
            tmdb_id=12345,
            validation_source_count=2,
            consensus_score=0.6,
        )
        result = calculate_confidence(inputs)

        assert result.tier in {"high", "excellent"}
        assert 0.80 <= result.confidence_score <= 0.95
        assert "verified" in result.flags
        assert not [f for f in result.flags if f.startswith("missing_")]

    def test_verified_boost_is_capped(self):
        inputs = ConfidenceInputs(
            has_hero=True, has_director=True, has_synopsis=True, has_release_year=True,
            has_genres=True, poster_confidence=1.0, has_our_rating=True, has_reviews=True,
            review_count=3, validation_source_count=3, consensus_score=1.0,
            data_sources=("a", "b", "c", "d", "e"), tmdb_id=1, imdb_id="tt1", wikidata_id="Q1",
            is_verified=True,
        )
        result = calculate_confidence(inputs)
        assert result.confidence_score == 1.0
        assert result.tier == "excellent"
        assert "high_quality" in result.flags
        assert "verified" in result.flags

    def test_manual_override_penalty(self):
        base = ConfidenceInputs(has_hero=True)
        assert calculate_confidence(base).confidence_score == pytest.approx(0.25)
        assert calculate_confidence(replace(base, manual_overrides=3)).confidence_score == pytest.approx(0.25)
        assert calculate_confidence(replace(base, manual_overrides=4)).confidence_score == pytest.approx(0.20)

    def test_heavily_edited_flag(self):
        assert "heavily_edited" not in calculate_confidence(ConfidenceInputs(manual_overrides=5)).flags
        assert "heavily_edited" in calculate_confidence(ConfidenceInputs(manual_overrides=6)).flags

    def test_penalty_floors_at_zero(self):
        result = calculate_confidence(ConfidenceInputs(manual_overrides=10))
        assert result.confidence_score == 0.0


class TestLegacyRatchet:
    """Stored data_confidence never lets the score drop below it."""

    def test_legacy_score_wins_when_higher(self):
        inputs = ConfidenceInputs(
            has_hero=True, has_director=True, has_synopsis=True, has_release_year=True,
            has_genres=True, has_poster=True, data_confidence=0.95,
        )
        # Computed: cast 0.25 + metadata 0.20 + image 0.105 = 0.555
        assert calculate_confidence(inputs, legacy_ratchet=False).confidence_score == pytest.approx(0.56, abs=0.01)
        assert calculate_confidence(inputs).confidence_score == pytest.approx(0.95)
        assert calculate_confidence(inputs).tier == "excellent"

    def test_legacy_score_ignored_when_lower(self):
        inputs = ConfidenceInputs(has_hero=True, data_confidence=0.1)
        assert calculate_confidence(inputs).confidence_score == pytest.approx(0.25)

    def test_ratchet_flags_follow_final_score(self):
        result = calculate_confidence(ConfidenceInputs(data_confidence=0.95))
        assert "high_quality" in result.flags
        assert "verified" not in result.flags  # not marked verified
        assert "low_confidence" not in result.flags


class TestTiers:
    """Tier thresholds on both sides of every edge."""

    @pytest.mark.parametrize("score,tier", [
        (1.0, "excellent"),
        (0.90, "excellent"),
        (0.8999, "high"),
        (0.80, "high"),
        (0.7999, "good"),
        (0.70, "good"),
        (0.6999, "medium"),
        (0.60, "medium"),
        (0.5999, "low"),
        (0.50, "low"),
        (0.4999, "very_low"),
        (0.0, "very_low"),
    ])
    def test_boundaries(self, score, tier):
        assert confidence_tier(score) == tier

    def test_tier_uses_unrounded_score(self):
        # 0.8975 rounds to 0.90 for output but still sits in the "high" tier
        result = calculate_confidence(ConfidenceInputs(data_confidence=0.8975))
        assert result.confidence_score == pytest.approx(0.90)
        assert result.tier == "high"
        assert "high_quality" not in result.flags


class TestFlags:
    """Flags come from raw inputs, independent of tier."""

    def test_single_source(self):
        assert "single_source" in calculate_confidence(ConfidenceInputs()).flags
        assert "single_source" not in calculate_confidence(ConfidenceInputs(data_sources=("tmdb",))).flags

    def test_external_ids(self):
        assert "no_external_ids" not in calculate_confidence(ConfidenceInputs(imdb_id="tt1")).flags
        # wikidata alone still counts as no usable external id
        assert "no_external_ids" in calculate_confidence(ConfidenceInputs(wikidata_id="Q1")).flags

    def test_low_validation(self):
        assert "low_validation" in calculate_confidence(ConfidenceInputs(validation_source_count=1)).flags
        assert "low_validation" not in calculate_confidence(ConfidenceInputs(validation_source_count=2)).flags

    def test_core_cast_needs_hero_or_director(self):
        assert "missing_core_cast" not in calculate_confidence(ConfidenceInputs(has_director=True)).flags


class TestProperties:
    """Invariants over generated inputs."""

    @pytest.mark.parametrize("seed", range(25))
    def test_scores_stay_in_unit_interval(self, seed):
        rng = random.Random(seed)
        for _ in range(40):
            result = calculate_confidence(random_inputs(rng))
            assert 0.0 <= result.confidence_score <= 1.0
            b = result.breakdown
            for value in (b.cast_confidence, b.metadata_confidence, b.image_confidence,
                          b.review_confidence, b.validation_confidence):
                assert 0.0 <= value <= 1.0

    @pytest.mark.parametrize("seed", range(10))
    def test_adding_a_signal_never_lowers_the_score(self, seed):
        rng = random.Random(1000 + seed)
        for _ in range(20):
            base = random_inputs(rng)
            for name in PRESENCE_FIELDS:
                absent = replace(base, **{name: False})
                present = replace(base, **{name: True})
                assert (calculate_confidence(present).confidence_score
                        >= calculate_confidence(absent).confidence_score), name

    @pytest.mark.parametrize("seed", range(10))
    @pytest.mark.parametrize("name", ["completeness_score", "consensus_score"])
    def test_adding_a_score_signal_never_lowers_the_score(self, seed, name):
        rng = random.Random(4000 + seed)
        for _ in range(20):
            base = random_inputs(rng)
            absent = replace(base, **{name: None})
            present = replace(base, **{name: rng.uniform(0.0, 1.0)})
            assert (calculate_confidence(present).confidence_score
                    >= calculate_confidence(absent).confidence_score), name

    @pytest.mark.parametrize("seed", range(5))
    def test_adding_ids_and_sources_never_lowers_the_score(self, seed):
        rng = random.Random(2000 + seed)
        for _ in range(20):
            base = replace(random_inputs(rng), tmdb_id=None, data_sources=())
            score = calculate_confidence(base).confidence_score
            assert calculate_confidence(replace(base, tmdb_id=7)).confidence_score >= score
            assert calculate_confidence(replace(base, data_sources=("tmdb",))).confidence_score >= score

    @pytest.mark.parametrize("seed", range(5))
    def test_same_inputs_same_result(self, seed):
        rng = random.Random(3000 + seed)
        for _ in range(20):
            inputs = random_inputs(rng)
            first = calculate_confidence(inputs)
            second = calculate_confidence(inputs)
            assert first == second
            assert first.to_dict() == second.to_dict()

    def test_junk_values_do_not_raise(self):
        inputs = ConfidenceInputs(
            poster_confidence="abc",
            consensus_score=float("nan"),
            review_count="many",
            manual_overrides=float("inf"),
            completeness_score=[],
        )
        result = calculate_confidence(inputs)
        assert 0.0 <= result.confidence_score <= 1.0


class TestBatchHelpers:
    """Batch scoring and statistics."""

    def test_batch_preserves_order(self):
        movies = [ConfidenceInputs(), ConfidenceInputs(has_hero=True)]
        results = calculate_batch_confidence(movies)
        assert [r.confidence_score for r in results] == [0.0, 0.25]

    def test_statistics_empty(self):
        stats = confidence_statistics([])
        assert stats["count"] == 0
        assert stats["mean"] == stats["median"] == stats["min"] == stats["max"] == 0.0
        assert all(v == 0 for v in stats["tiers"].values())

    def test_statistics(self):
        stats = confidence_statistics([0.5, 0.95, 0.7, 0.65])
        assert stats["mean"] == pytest.approx(0.70)
        assert stats["median"] == pytest.approx(0.70)
        assert stats["min"] == 0.5
        assert stats["max"] == 0.95
        assert stats["tiers"]["excellent"] == 1
        assert stats["tiers"]["good"] == 1
        assert stats["tiers"]["medium"] == 1
        assert stats["tiers"]["low"] == 1
        assert stats["tiers"]["very_low"] == 0

    def test_round2_rounds_half_up(self):
        assert round2(0.125) == pytest.approx(0.13)
        assert round2(0.8975) == pytest.approx(0.90)
