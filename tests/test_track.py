import unittest

from notchaudio.lib.track import (
    FIELD_SEPARATOR,
    SourceKind,
    TrackObservation,
    TrackSource,
    fingerprint,
    parse_float,
    split_fingerprint,
)


class TestFingerprint(unittest.TestCase):
    def test_pipes_in_metadata_do_not_split_fields(self) -> None:
        key = fingerprint("Song | With | Pipes", "A | B", "~~Album~~")
        self.assertEqual(split_fingerprint(key), ("Song | With | Pipes", "A | B", "~~Album~~"))

    def test_separator_inside_a_field_is_escaped(self) -> None:
        key = fingerprint(f"odd{FIELD_SEPARATOR}title", "artist", None)
        self.assertEqual(key.count(FIELD_SEPARATOR), 2)
        self.assertEqual(split_fingerprint(key), (f"odd{FIELD_SEPARATOR}title", "artist", ""))

    def test_escape_sequences_stay_distinct(self) -> None:
        literal = fingerprint("a\\u", None, None)
        escaped = fingerprint(f"a{FIELD_SEPARATOR}", None, None)
        self.assertNotEqual(literal, escaped)
        self.assertEqual(split_fingerprint(literal)[0], "a\\u")
        self.assertEqual(split_fingerprint(escaped)[0], f"a{FIELD_SEPARATOR}")

    def test_missing_fields_encode_as_empty(self) -> None:
        self.assertEqual(fingerprint("T"), fingerprint("T", "", ""))

    def test_split_rejects_wrong_field_count(self) -> None:
        with self.assertRaises(ValueError):
            split_fingerprint("only|one")


class TestTrackObservation(unittest.TestCase):
    def test_equality_ignores_artwork_position_and_source(self) -> None:
        a = TrackObservation("T", "A", "B", artwork=b"x", elapsed=1.0)
        b = TrackObservation("T", "A", "B", source=TrackSource(SourceKind.SCRIPTED, "Music"),
                             elapsed=50.0)
        self.assertEqual(a, b)
        self.assertEqual(hash(a), hash(b))
        self.assertNotEqual(a, TrackObservation("T", "A", "C"))

    def test_empty_title_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            TrackObservation("   ")

    def test_to_dict_excludes_artwork(self) -> None:
        data = TrackObservation("T", artwork=b"png").to_dict()
        self.assertNotIn("artwork", data)
        self.assertEqual(data["source"], {"kind": "native", "app": None})

    def test_display_artist_falls_back_to_app(self) -> None:
        tab = TrackObservation("Video", source=TrackSource(SourceKind.BROWSER, "Safari"))
        self.assertEqual(tab.display_artist, "Safari")


class TestParseFloat(unittest.TestCase):
    def test_lenient_values(self) -> None:
        self.assertEqual(parse_float("12,5"), 12.5)
        self.assertEqual(parse_float(3), 3.0)
        self.assertIsNone(parse_float("missing value"))
        self.assertIsNone(parse_float(""))
        self.assertIsNone(parse_float("abc"))
        self.assertIsNone(parse_float(None))


if __name__ == "__main__":
    unittest.main()
