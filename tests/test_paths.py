"""
Store path parsing and canonical keys.
"""

import unittest

from aclgate.errors import ValidationError
from aclgate.paths import StorePath, key_is_content_addressed


class TestStorePath(unittest.TestCase):

    def test_parse_drops_empty_segments(self):
        path = StorePath.parse("/users//abc/profile/")
        self.assertEqual(path.segments, ("users", "abc", "profile"))
        self.assertEqual(path.key(), "users/abc/profile")
        self.assertEqual(path.key(trailing_slash=True), "users/abc/profile/")

    def test_escaped_separator_stays_inside_segment(self):
        path = StorePath.parse("users/ab%2Fcd%3D/x")
        self.assertEqual(path.segments, ("users", "ab/cd=", "x"))
        self.assertEqual(path.key(), "users/ab%2Fcd%3D/x")

    def test_canonical_key_is_stable_across_encodings(self):
        # "~" and "-" need no escaping, "+" always does
        a = StorePath.parse("users/a%2Bb")
        b = StorePath.of("users", "a+b")
        self.assertEqual(a, b)
        self.assertEqual(a.key(), "users/a%2Bb")

    def test_empty_path_rejected(self):
        with self.assertRaises(ValidationError):
            StorePath.parse("///")

    def test_ancestors_walk_to_root(self):
        path = StorePath.parse("users/K/a/b")
        keys = [p.key() for p in path.ancestors()]
        self.assertEqual(keys, ["users/K/a/b", "users/K/a", "users/K", "users"])

    def test_parent_and_child(self):
        path = StorePath.parse("users/K")
        self.assertEqual(path.parent(), StorePath.of("users"))
        self.assertIsNone(StorePath.of("users").parent())
        self.assertEqual(path.child("x").key(), "users/K/x")

    def test_startswith_compares_whole_segments(self):
        path = StorePath.parse("users/K/abc")
        self.assertTrue(path.startswith(StorePath.parse("users/K")))
        self.assertFalse(path.startswith(StorePath.parse("users/K/ab")))

    def test_namespace(self):
        self.assertTrue(StorePath.parse("users/K").in_namespace("users"))
        self.assertTrue(StorePath.parse("users").in_namespace("users"))
        self.assertFalse(StorePath.parse("public/users").in_namespace("users"))
        self.assertFalse(StorePath.parse("usersX/K").in_namespace("users"))

    def test_digest_marker(self):
        path = StorePath.parse("users/K/%23posts/abc%3D")
        self.assertEqual(path.digest_marker_index(), 2)
        self.assertTrue(path.is_content_addressed())
        self.assertFalse(StorePath.parse("users/K/posts").is_content_addressed())

    def test_key_is_content_addressed(self):
        self.assertTrue(key_is_content_addressed("users/K/%23posts/abc%3D/"))
        self.assertFalse(key_is_content_addressed("users/K/posts/a%2523"))
