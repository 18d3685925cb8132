"""Unit tests for semantic version handling."""

from __future__ import annotations

import pytest

from strata_core.versioning import SemVer, compare_versions, is_valid_semver


class TestSemVerParsing:
    @pytest.mark.parametrize("value", ["0.0.1", "1.2.3", "1.0.0-rc.1", "2.0.0+build.7", "1.0.0-alpha-1+x"])
    def test_valid(self, value: str) -> None:
        assert is_valid_semver(value)
        assert str(SemVer.parse(value)) == value

    @pytest.mark.parametrize("value", ["", "1", "1.0", "01.0.0", "1.0.0-", "v1.0.0", None])
    def test_invalid(self, value: str | None) -> None:
        assert not is_valid_semver(value)

    def test_parse_invalid_raises(self) -> None:
        with pytest.raises(ValueError, match="Invalid semantic version"):
            SemVer.parse("1.0")


class TestPrecedence:
    @pytest.mark.parametrize(
        ("lower", "higher"),
        [
            ("1.0.0", "1.0.1"),
            ("1.9.0", "1.10.0"),
            ("1.0.0-rc.1", "1.0.0"),
            ("1.0.0-alpha", "1.0.0-alpha.1"),
            ("1.0.0-alpha.2", "1.0.0-alpha.10"),
            ("1.0.0-1", "1.0.0-alpha"),
        ],
    )
    def test_ordering(self, lower: str, higher: str) -> None:
        assert SemVer.parse(lower) < SemVer.parse(higher)
        assert compare_versions(lower, higher) == -1
        assert compare_versions(higher, lower) == 1

    def test_build_metadata_ignored(self) -> None:
        assert compare_versions("1.0.0+a", "1.0.0+b") == 0
        assert SemVer.parse("1.0.0+a") == SemVer.parse("1.0.0")
        assert hash(SemVer.parse("1.0.0+a")) == hash(SemVer.parse("1.0.0"))
