import unittest
from unittest import mock

from xhs_relay.core.config import Settings
from xhs_relay.services import image_proxy
from xhs_relay.services.image_proxy import _safe_allowed, content_type_of, iter_body, open_image


class TestAllowedHosts(unittest.TestCase):
    def test_cdn_hosts_allowed(self):
        self.assertTrue(_safe_allowed("https://sns-webpic-qc.xhscdn.com/202406/abc!nd_dft_wlteh_webp_3"))
        self.assertTrue(_safe_allowed("http://ci.xhsimg.com/a.jpg"))
        self.assertTrue(_safe_allowed("https://picasso-static.xiaohongshu.com/fe-platform/a.png"))

    def test_lookalike_and_internal_hosts_refused(self):
        self.assertFalse(_safe_allowed("https://evil-xhscdn.com/a.jpg"))
        self.assertFalse(_safe_allowed("https://xhscdn.com.evil.example/a.jpg"))
        self.assertFalse(_safe_allowed("https://www.xiaohongshu.com/explore/1"))
        self.assertFalse(_safe_allowed("http://127.0.0.1:8000/health"))
        self.assertFalse(_safe_allowed("file:///etc/passwd"))

    def test_non_strict_mode_only_checks_scheme(self):
        self.assertTrue(_safe_allowed("https://cdn.example.com/a.jpg", strict=False))
        self.assertFalse(_safe_allowed("ftp://cdn.example.com/a.jpg", strict=False))


class TestOpenImage(unittest.TestCase):
    def test_refused_url_raises_value_error(self):
        with self.assertRaises(ValueError):
            open_image("https://example.com/a.jpg", Settings())
        with self.assertRaises(ValueError):
            open_image("", Settings())

    def test_upstream_request_carries_referer_and_cookie(self):
        settings = Settings(cookie="a1=xyz")
        with mock.patch.object(image_proxy.requests, "get") as get:
            open_image("https://sns-webpic-qc.xhscdn.com/a/1040g2sg3abcdef", settings)
        _, kwargs = get.call_args
        self.assertTrue(kwargs["stream"])
        self.assertEqual(kwargs["headers"]["Referer"], "https://www.xiaohongshu.com/")
        self.assertEqual(kwargs["headers"]["Cookie"], "a1=xyz")

    def test_iter_body_closes_response(self):
        resp = mock.Mock()
        resp.iter_content.return_value = iter([b"ab", b"", b"cd"])
        self.assertEqual(b"".join(iter_body(resp)), b"abcd")
        resp.close.assert_called_once()

    def test_content_type_strips_parameters(self):
        resp = mock.Mock(headers={"content-type": "image/webp; charset=binary"})
        self.assertEqual(content_type_of(resp), "image/webp")
        self.assertEqual(content_type_of(mock.Mock(headers={})), "application/octet-stream")


if __name__ == "__main__":
    unittest.main()
