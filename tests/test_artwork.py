import os
import unittest

from notchaudio.lib.artwork import ArtworkCache, encode_artwork, read_and_discard, temp_artwork_path

from fakes import png_bytes


class TestArtworkCache(unittest.TestCase):
    def test_never_exceeds_capacity(self) -> None:
        cache = ArtworkCache(max_size=3)
        for i in range(10):
            cache.put(f"k{i}", b"data")
        self.assertEqual(len(cache), 3)
        self.assertEqual(cache.keys(), ["k7", "k8", "k9"])

    def test_get_refreshes_recency(self) -> None:
        cache = ArtworkCache(max_size=2)
        cache.put("a", b"1")
        cache.put("b", b"2")
        self.assertEqual(cache.get("a"), b"1")
        cache.put("c", b"3")
        self.assertIn("a", cache)
        self.assertNotIn("b", cache)

    def test_empty_data_is_not_cached(self) -> None:
        cache = ArtworkCache()
        cache.put("a", b"")
        self.assertIsNone(cache.get("a"))
        self.assertEqual(len(cache), 0)

    def test_capacity_must_be_positive(self) -> None:
        with self.assertRaises(ValueError):
            ArtworkCache(max_size=0)


class TestTempArtworkPath(unittest.TestCase):
    def test_paths_are_unique_and_removed(self) -> None:
        with temp_artwork_path() as first, temp_artwork_path() as second:
            self.assertNotEqual(first, second)
            with open(first, "wb") as f:
                f.write(b"img")
            self.assertEqual(read_and_discard(first), b"img")
            self.assertIsNone(read_and_discard(second))
        self.assertFalse(os.path.exists(first))
        self.assertFalse(os.path.exists(second))


class TestEncodeArtwork(unittest.IsolatedAsyncioTestCase):
    async def test_png_is_reencoded_as_jpeg(self) -> None:
        result = await encode_artwork(png_bytes(size=(8, 6)))
        self.assertIsNotNone(result)
        self.assertEqual(tuple(result["size"]), (8, 6))
        self.assertTrue(result["base64"])

    async def test_garbage_and_empty_input(self) -> None:
        self.assertIsNone(await encode_artwork(b"not an image"))
        self.assertIsNone(await encode_artwork(None))


if __name__ == "__main__":
    unittest.main()
