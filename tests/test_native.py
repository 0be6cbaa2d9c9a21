import asyncio
import base64
import json
import os
import sys
import tempfile
import unittest
from unittest.mock import AsyncMock, patch

from notchaudio.lib.artwork import ArtworkCache
from notchaudio.lib.errors import ErrorReporter
from notchaudio.lib.track import SourceKind
from notchaudio.native import MediaControlProvider, NullNativeProvider, observation_from_payload
from notchaudio.probes.base import Command

from fakes import ManualClock

PAYLOAD = {
    "title": "Track",
    "artist": "Artist",
    "album": "Album",
    "duration": 200.0,
    "elapsedTime": 12.5,
    "bundleIdentifier": "com.apple.Music",
    "playing": True,
    "artworkData": base64.b64encode(b"jpeg-bytes").decode(),
}


class TestObservationFromPayload(unittest.TestCase):
    def test_full_payload(self) -> None:
        cache = ArtworkCache()
        track, playing = observation_from_payload(PAYLOAD, cache)

        self.assertTrue(playing)
        self.assertEqual((track.title, track.artist, track.album), ("Track", "Artist", "Album"))
        self.assertEqual(track.source.kind, SourceKind.NATIVE)
        self.assertEqual(track.source.app_id, "com.apple.Music")
        self.assertEqual((track.duration, track.elapsed), (200.0, 12.5))
        self.assertEqual(track.artwork, b"jpeg-bytes")
        self.assertEqual(cache.get(track.fingerprint), b"jpeg-bytes")

    def test_cached_artwork_is_reused(self) -> None:
        cache = ArtworkCache()
        payload = dict(PAYLOAD, artworkData=None)
        first, _ = observation_from_payload(payload, cache)
        self.assertIsNone(first.artwork)
        cache.put(first.fingerprint, b"cached")
        second, _ = observation_from_payload(payload, cache)
        self.assertEqual(second.artwork, b"cached")

    def test_nothing_playing(self) -> None:
        self.assertEqual(observation_from_payload(None), (None, False))
        self.assertEqual(observation_from_payload({"title": "  ", "playing": True}), (None, False))

    def test_bad_artwork_is_dropped(self) -> None:
        track, _ = observation_from_payload(dict(PAYLOAD, artworkData="%%%"), ArtworkCache())
        self.assertIsNone(track.artwork)


class TestMediaControlProvider(unittest.IsolatedAsyncioTestCase):
    def make(self):
        self.reporter = ErrorReporter()
        provider = MediaControlProvider("media-control", artwork_cache=ArtworkCache(),
                                        reporter=self.reporter)
        provider._available = True
        provider._resolved = True
        return provider

    async def test_missing_helper_stays_unavailable(self) -> None:
        reporter = ErrorReporter()
        provider = MediaControlProvider("notchaudio-no-such-helper", reporter=reporter)
        await provider.start()
        await provider.start()

        self.assertFalse(provider.is_available())
        self.assertEqual(reporter.counts["NativeProviderLoadFailure"], 1)
        self.assertIsNone(await provider.current_info())
        self.assertFalse(await provider.send_command(Command.NEXT))
        await provider.stop()

    async def test_current_info(self) -> None:
        provider = self.make()
        with patch("notchaudio.native.run_process",
                   AsyncMock(return_value=(0, json.dumps(PAYLOAD), ""))):
            track = await provider.current_info()
        self.assertEqual(track.title, "Track")
        self.assertTrue(await provider.is_playing())

    async def test_null_means_nothing_playing(self) -> None:
        provider = self.make()
        provider._playing = True
        with patch("notchaudio.native.run_process", AsyncMock(return_value=(0, "null\n", ""))):
            self.assertIsNone(await provider.current_info())
        self.assertFalse(await provider.is_playing())

    async def test_bad_output_is_reported(self) -> None:
        provider = self.make()
        with patch("notchaudio.native.run_process", AsyncMock(return_value=(0, "{oops", ""))):
            self.assertIsNone(await provider.current_info())
        self.assertEqual(self.reporter.counts["MalformedResponse"], 1)

    async def test_commands_map_to_helper_verbs(self) -> None:
        provider = self.make()
        run = AsyncMock(return_value=(0, "", ""))
        with patch("notchaudio.native.run_process", run):
            self.assertTrue(await provider.send_command(Command.NEXT))
            self.assertTrue(await provider.send_command(Command.PLAY_PAUSE))
        self.assertEqual(run.await_args_list[0].args, ("media-control", "next-track"))
        self.assertEqual(run.await_args_list[1].args, ("media-control", "toggle-play-pause"))

    async def test_failed_command(self) -> None:
        provider = self.make()
        with patch("notchaudio.native.run_process", AsyncMock(return_value=(1, "", "no player"))):
            self.assertFalse(await provider.send_command(Command.PREVIOUS))


class TestStreamMerge(unittest.TestCase):
    def test_diffs_merge_into_state(self) -> None:
        provider = MediaControlProvider()
        full = {"type": "data", "diff": False, "payload": {"title": "A", "artist": "X", "playing": True}}
        self.assertTrue(provider._apply_stream_line(json.dumps(full)))

        diff = {"type": "data", "diff": True, "payload": {"playing": False, "artist": None}}
        self.assertTrue(provider._apply_stream_line(json.dumps(diff)))
        self.assertEqual(provider._stream_state, {"title": "A", "playing": False})

    def test_non_data_lines_are_ignored(self) -> None:
        provider = MediaControlProvider()
        self.assertFalse(provider._apply_stream_line("not json"))
        self.assertFalse(provider._apply_stream_line(json.dumps({"type": "hello"})))
        self.assertFalse(provider._apply_stream_line("[1, 2]"))


HELPER = """#!{python}
import json, sys, time
verb = sys.argv[1]
if verb == "get":
    print("null")
elif verb == "stream":
    print(json.dumps({{"type": "data", "diff": False, "payload": {payload}}}), flush=True)
    print(json.dumps({{"type": "data", "diff": True, "payload": {{"playing": False}}}}), flush=True)
    if {linger}:
        time.sleep(60)
"""


def write_helper(directory: str, payload: dict, *, linger: bool = True) -> str:
    path = os.path.join(directory, "media-control")
    with open(path, "w") as f:
        f.write(HELPER.format(python=sys.executable, payload=repr(payload), linger=linger))
    os.chmod(path, 0o755)
    return path


async def wait_until(predicate, timeout: float = 5.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.02)


class TestChangeStream(unittest.IsolatedAsyncioTestCase):
    """Runs a stand-in helper script through the real stream loop."""

    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        # Large enough to overflow asyncio's default 64 KiB line buffer
        self.artwork = os.urandom(96 * 1024)
        self.payload = dict(PAYLOAD, artworkData=base64.b64encode(self.artwork).decode())

    def make(self, *, linger: bool = True, **kwargs) -> MediaControlProvider:
        helper = write_helper(self.tmp.name, self.payload, linger=linger)
        provider = MediaControlProvider(helper, artwork_cache=ArtworkCache(), **kwargs)
        self.changes = 0

        def on_change():
            self.changes += 1

        provider.register_for_change_notifications(on_change)
        return provider

    async def test_long_artwork_line_is_merged(self) -> None:
        provider = self.make()
        await provider.start()
        try:
            self.assertTrue(provider.is_available())
            await wait_until(lambda: self.changes >= 2)

            self.assertEqual(provider._stream_state["title"], "Track")
            self.assertFalse(provider._stream_state["playing"])
            self.assertEqual(provider.stream_restarts, 0)

            get = AsyncMock()
            with patch("notchaudio.native.run_process", get):
                track = await provider.current_info()
            get.assert_not_awaited()
            self.assertEqual(track.title, "Track")
            self.assertEqual(track.artwork, self.artwork)
            self.assertFalse(await provider.is_playing())
        finally:
            await provider.stop()

    async def test_stop_kills_the_stream_process(self) -> None:
        provider = self.make()
        await provider.start()
        await wait_until(lambda: self.changes >= 2)
        proc = provider._stream_proc

        await provider.stop()

        self.assertIsNotNone(proc.returncode)
        self.assertFalse(provider.stream_is_fresh())

    async def test_exited_stream_is_restarted(self) -> None:
        provider = self.make(linger=False, restart_delay=0.01)
        await provider.start()
        try:
            await wait_until(lambda: provider.stream_restarts >= 1 and self.changes >= 4)
        finally:
            await provider.stop()

    async def test_quiet_stream_falls_back_to_get(self) -> None:
        clock = ManualClock()
        provider = self.make(stream_fresh_for=1.0, clock=clock)
        provider._available = True
        provider._resolved = True
        provider._apply_stream_line(json.dumps({"type": "data", "diff": False, "payload": PAYLOAD}))

        get = AsyncMock(return_value=(0, "null", ""))
        with patch("notchaudio.native.run_process", get):
            self.assertEqual((await provider.current_info()).title, "Track")
            get.assert_not_awaited()

            clock.advance(1.5)
            self.assertIsNone(await provider.current_info())
            get.assert_awaited_once()


class TestNullNativeProvider(unittest.IsolatedAsyncioTestCase):
    async def test_always_unavailable(self) -> None:
        provider = NullNativeProvider()
        await provider.start()
        self.assertFalse(provider.is_available())
        self.assertIsNone(await provider.current_info())
        self.assertFalse(await provider.is_playing())


if __name__ == "__main__":
    unittest.main()
