import json
import os
import tempfile
import unittest
from unittest.mock import patch

from notchaudio.lib import config


class TestConfig(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmp.name, "config.json")
        self.env = patch.dict(os.environ, {"NOTCHAUDIO_CONFIG": self.path})
        self.env.start()

    def tearDown(self) -> None:
        self.env.stop()
        self.tmp.cleanup()
        config._config = None

    def write(self, data) -> None:
        with open(self.path, "w") as f:
            f.write(data if isinstance(data, str) else json.dumps(data))

    def test_values_and_defaults(self) -> None:
        self.write({"polling": {"native_interval": 1.5}, "server": {"port": 9000}})
        config.reload_config()

        self.assertEqual(config.cfg("polling", "native_interval", default=2.0), 1.5)
        self.assertEqual(config.cfg("polling", "fallback_interval", default=3.0), 3.0)
        self.assertEqual(config.cfg("server"), {"port": 9000})
        self.assertEqual(config.cfg("artwork", "cache_size", default=30), 30)
        self.assertEqual(config.cfg("probes", default=[]), [])

    def test_override_path_comes_first(self) -> None:
        self.assertEqual(config._search_paths()[0], self.path)

    def test_reload_picks_up_changes(self) -> None:
        self.write({"server": {"port": 1}})
        config.reload_config()
        self.write({"server": {"port": 2}})
        self.assertEqual(config.cfg("server", "port"), 1)
        config.reload_config()
        self.assertEqual(config.cfg("server", "port"), 2)

    def test_suspicious_values_are_warned_about(self) -> None:
        self.write({"polling": {"native_interval": -1}, "bogus": {}, "probes": {"order": "Music"}})
        with self.assertLogs("notchaudio.lib.config", level="WARNING") as logs:
            config.reload_config()
        output = "\n".join(logs.output)
        self.assertIn("unknown section 'bogus'", output)
        self.assertIn("polling.native_interval", output)
        self.assertIn("probes.order", output)

    def test_invalid_json_is_skipped(self) -> None:
        self.write("{not json")
        with patch.object(config, "_search_paths", return_value=[self.path]):
            with self.assertLogs("notchaudio.lib.config", level="ERROR"):
                self.assertEqual(config.reload_config(), {})


if __name__ == "__main__":
    unittest.main()
