"""
Unit tests for the difficulty profile table.

Tests cover:
- Tier resolution (default, case-insensitive, alias, unknown)
- Profile ranges are well formed and grow with the tier
- Directive bands
"""

import pytest

from casegen.core.difficulty import (
    ALL_LEVELS,
    DIFFICULTY_PROFILES,
    difficulty_directive,
    get_profile,
    in_range,
    resolve_difficulty,
)


class TestResolveDifficulty:
    """Tests for resolve_difficulty."""

    @pytest.mark.parametrize("label", [None, "", "   "])
    def test_blank_defaults_to_rookie(self, label):
        assert resolve_difficulty(label) == "Rookie"

    def test_case_insensitive(self):
        assert resolve_difficulty("sergeant") == "Sergeant"
        assert resolve_difficulty(" Detective2 ") == "Detective2"

    def test_legacy_alias(self):
        assert resolve_difficulty("Iniciante") == "Rookie"

    def test_unknown_tier_is_an_error(self):
        with pytest.raises(ValueError, match="Unknown difficulty tier"):
            resolve_difficulty("Inspector")


class TestProfiles:
    """Tests for the profile table itself."""

    def test_seven_tiers_in_order(self):
        assert ALL_LEVELS == [
            "Rookie", "Detective", "Detective2", "Sergeant", "Lieutenant", "Captain", "Commander",
        ]

    def test_ranges_are_ordered(self):
        for profile in DIFFICULTY_PROFILES.values():
            for low, high in (profile.suspects, profile.documents, profile.evidences,
                              profile.estimated_duration_minutes):
                assert low <= high

    def test_gates_grow_with_tier(self):
        gated = [DIFFICULTY_PROFILES[name].gated_documents for name in ALL_LEVELS]
        assert gated == sorted(gated)
        assert gated[0] == 0

    def test_to_dict_uses_camel_case(self):
        data = get_profile("Detective").to_dict()

        assert data["documents"] == {"min": 8, "max": 12}
        assert data["gatedDocuments"] == 1
        assert data["estimatedDurationMinutes"] == {"min": 60, "max": 120}

    def test_in_range_is_inclusive(self):
        assert in_range(6, (6, 8))
        assert in_range(8, (6, 8))
        assert not in_range(9, (6, 8))


class TestDifficultyDirective:
    """Tests for the writing directive bands."""

    def test_bands(self):
        assert "minimal jargon" in difficulty_directive("Rookie")
        assert "cross-checks" in difficulty_directive("Detective2")
        assert "layered" in difficulty_directive("Lieutenant")
        assert "expert-level" in difficulty_directive("Commander")

    def test_directive_names_the_tier(self):
        assert "(Sergeant)" in difficulty_directive("sergeant")
