import json
import logging
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from xhs_relay.core.config import Settings, env_bool, env_int, env_list
from xhs_relay.core.logger import JsonFormatter, TaskLogger, redact_url


class TestEnvHelpers(unittest.TestCase):
    def test_env_bool_tolerates_garbage(self):
        with mock.patch.dict(os.environ, {"X_FLAG": "maybe"}):
            self.assertTrue(env_bool("X_FLAG", True))
        with mock.patch.dict(os.environ, {"X_FLAG": "off"}):
            self.assertFalse(env_bool("X_FLAG", True))

    def test_env_int_blank_is_default(self):
        with mock.patch.dict(os.environ, {"X_NUM": "  "}):
            self.assertEqual(env_int("X_NUM", 7), 7)
        with mock.patch.dict(os.environ, {"X_NUM": "abc"}):
            self.assertEqual(env_int("X_NUM", 7), 7)

    def test_env_list(self):
        with mock.patch.dict(os.environ, {"X_LIST": "XHSLink.com, ,t.cn"}):
            self.assertEqual(env_list("X_LIST"), ("xhslink.com", "t.cn"))


class TestSettingsFromEnv(unittest.TestCase):
    def test_defaults(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            s = Settings.from_env()
        self.assertEqual(s.short_link_hosts, ("xhslink.com",))
        self.assertEqual(s.min_image_width, 720)
        self.assertTrue(s.prefer_mp4)
        self.assertIsNone(s.relay_template)
        self.assertEqual(s.postbridge_base_url, "https://api.post-bridge.com")

    def test_overrides_and_relay_template(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "relay.json"
            path.write_text(json.dumps({"endpoint": "https://h.example.com/api", "url_field": "link"}), encoding="utf-8")
            env = {
                "XHS_MIN_IMAGE_WIDTH": "1080",
                "XHS_PREFER_MP4": "false",
                "XHS_EXCLUDE_KEYWORDS": "Sticker,frame",
                "XHS_RELAY_TEMPLATE": str(path),
                "POSTBRIDGE_BASE_URL": "https://pb.example.com/",
            }
            with mock.patch.dict(os.environ, env, clear=True):
                s = Settings.from_env()
        self.assertEqual(s.min_image_width, 1080)
        self.assertFalse(s.prefer_mp4)
        self.assertEqual(s.extra_exclude_keywords, ("sticker", "frame"))
        self.assertEqual(s.relay_template.url_field, "link")
        self.assertEqual(s.postbridge_base_url, "https://pb.example.com")


class TestLogging(unittest.TestCase):
    def test_redact_url(self):
        self.assertEqual(
            redact_url("https://www.xiaohongshu.com/explore/1?xsec_token=SECRET&xsec_source=pc"),
            "https://www.xiaohongshu.com/explore/1?xsec_token=<redacted>&xsec_source=pc",
        )

    def test_json_formatter_includes_trace_and_props(self):
        record = logging.LogRecord("xhs-relay", logging.INFO, __file__, 1, "xhs.stage", None, None)
        record.trace_id = "t-1"
        record.props = {"stage": "mined", "images": 3}
        out = json.loads(JsonFormatter().format(record))
        self.assertEqual(out["trace_id"], "t-1")
        self.assertEqual(out["stage"], "mined")
        self.assertEqual(out["images"], 3)
        self.assertEqual(out["level"], "INFO")

    def test_stage_logging_respects_switch(self):
        task = TaskLogger("t-2")
        with mock.patch.dict(os.environ, {"XHS_LOG_STAGE": "0"}), mock.patch.object(task, "info") as info:
            task.stage("fetched", status_code=200)
        info.assert_not_called()
        with mock.patch.dict(os.environ, {"XHS_LOG_STAGE": "1"}), mock.patch.object(task, "info") as info:
            task.stage("fetched", status_code=200)
        info.assert_called_once_with("xhs.stage", stage="fetched", status_code=200)

    def test_stage_logging_never_raises(self):
        task = TaskLogger("t-3")
        with mock.patch.object(task, "info", side_effect=RuntimeError("handler broke")):
            task.stage("mined")


if __name__ == "__main__":
    unittest.main()
