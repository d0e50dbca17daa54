from __future__ import annotations

from unittest import TestCase

from fleet_rollout.core.errors import MalformedInputError, MalformedVersionError
from fleet_rollout.services.versions import compare_versions, is_older_version, parse_version


class VersionComparatorTests(TestCase):
    def test_numeric_components_compare_as_integers(self) -> None:
        self.assertEqual(compare_versions("1.10", "1.9"), 1)
        self.assertEqual(compare_versions("1.2.3", "1.2.4"), -1)
        self.assertEqual(compare_versions("4.0", "4.0"), 0)

    def test_missing_components_are_padded_with_zero(self) -> None:
        self.assertEqual(compare_versions("1.0", "1.0.0"), 0)
        self.assertEqual(compare_versions("2", "2.0.1"), -1)
        self.assertEqual(compare_versions("2.0.1", "2"), 1)

    def test_comparison_is_antisymmetric(self) -> None:
        pairs = [("1.0", "1.1"), ("3.2.1", "3.2"), ("0.9", "0.9.0"), ("10", "9.99")]
        for left, right in pairs:
            with self.subTest(left=left, right=right):
                self.assertEqual(compare_versions(left, right), -compare_versions(right, left))

    def test_is_older_version(self) -> None:
        self.assertTrue(is_older_version("1.0", "1.1"))
        self.assertFalse(is_older_version("1.1", "1.1.0"))
        self.assertFalse(is_older_version("2.0", "1.9"))

    def test_parse_version_strips_whitespace(self) -> None:
        self.assertEqual(parse_version(" 1.2.3 "), (1, 2, 3))

    def test_malformed_versions_raise(self) -> None:
        for version in ["", "1.x", "1..2", "v1.0", "1.0-beta", "１.0"]:
            with self.subTest(version=version):
                with self.assertRaises(MalformedVersionError) as ctx:
                    compare_versions(version, "1.0")
                self.assertIsInstance(ctx.exception, MalformedInputError)
                self.assertEqual(ctx.exception.status_code, 400)
