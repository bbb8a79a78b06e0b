"""
Unit tests for semver-like tag detection and specificity ordering.
"""

import pytest

from registries.tags import (
    compare_tag_specificity,
    find_best_semver,
    is_semver_like,
    sort_tags_by_specificity,
)


class TestIsSemverLike:

    @pytest.mark.parametrize("tag", ["1.2.3", "v1.2", "1", "1.2.3-rc.1", "1.2.3+build", "v10.0.0-alpine"])
    def test_accepts_versions(self, tag):
        assert is_semver_like(tag)

    @pytest.mark.parametrize("tag", ["latest", "alpine", "sha-abc123", "v", "1.2.", "stable-1.2"])
    def test_rejects_non_versions(self, tag):
        assert not is_semver_like(tag)


class TestSpecificityOrdering:

    def test_more_segments_first_and_words_last(self):
        assert sort_tags_by_specificity(["1", "latest", "1.26", "1.26.0"]) == ["1.26.0", "1.26", "1", "latest"]

    def test_numeric_tie_break_descending(self):
        assert sort_tags_by_specificity(["1.9.0", "1.10.0", "1.2.0"]) == ["1.10.0", "1.9.0", "1.2.0"]

    def test_release_before_prerelease(self):
        assert sort_tags_by_specificity(["1.2.3-rc.1", "1.2.3"]) == ["1.2.3", "1.2.3-rc.1"]

    def test_non_semver_sorted_alphabetically(self):
        assert sort_tags_by_specificity(["stable", "alpine", "2"]) == ["2", "alpine", "stable"]

    def test_v_prefix_counts_same_segments(self):
        assert sort_tags_by_specificity(["v1.2", "1.2.0"]) == ["1.2.0", "v1.2"]

    def test_compare_is_consistent_with_sort(self):
        assert compare_tag_specificity("1.26.0", "1.26") < 0
        assert compare_tag_specificity("latest", "1") > 0
        assert compare_tag_specificity("1.0", "1.0") == 0


class TestFindBestSemver:

    def test_picks_most_specific(self):
        assert find_best_semver(["latest", "1", "1.26", "1.26.0"]) == "1.26.0"

    def test_none_without_semver(self):
        assert find_best_semver(["latest", "alpine"]) is None

    def test_empty(self):
        assert find_best_semver([]) is None
