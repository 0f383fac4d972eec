import unittest

import httpx

from xhs_relay.core.config import Settings
from xhs_relay.domain.errors import NoUrlFound, ResolutionFailed
from xhs_relay.services.link_resolver import (
    extract_first_url,
    extract_urls,
    follow_short_link,
    host_matches,
    resolve_link,
    unwrap_helper_url,
)

NOTE_URL = "https://www.xiaohongshu.com/explore/66aabbccddeeff0011223344"


class TestExtractUrls(unittest.TestCase):
    def test_first_url_from_share_text(self):
        text = "36岁的我 也能穿出少女感 http://xhslink.com/o/abc123 复制本条信息，打开【小红书】App查看精彩内容！"
        self.assertEqual(extract_first_url(text), "http://xhslink.com/o/abc123")

    def test_full_width_punctuation_ends_url(self):
        self.assertEqual(extract_first_url("看这个http://xhslink.com/o/abc123，太好看了"), "http://xhslink.com/o/abc123")

    def test_trailing_ascii_punctuation_stripped(self):
        self.assertEqual(extract_urls("links: (https://a.example.com/x)."), ["https://a.example.com/x"])

    def test_all_urls_in_order_without_duplicates(self):
        text = "http://xhslink.com/o/a http://xhslink.com/o/b\nhttp://xhslink.com/o/a"
        self.assertEqual(extract_urls(text), ["http://xhslink.com/o/a", "http://xhslink.com/o/b"])

    def test_no_url_raises(self):
        with self.assertRaises(NoUrlFound) as ctx:
            extract_first_url("just some words, no link here")
        self.assertEqual(ctx.exception.status_code, 400)
        self.assertEqual(ctx.exception.code, "NoUrlFound")

    def test_host_matches_is_strict_suffix(self):
        self.assertTrue(host_matches("xhslink.com", ["xhslink.com"]))
        self.assertTrue(host_matches("a.xhslink.com:443", ["xhslink.com"]))
        self.assertFalse(host_matches("evilxhslink.com", ["xhslink.com"]))

    def test_helper_page_unwrapped(self):
        s = Settings()
        wrapped = "https://dy.kukutool.com/xiaohongshu?url=http%3A%2F%2Fxhslink.com%2Fo%2Fabc123"
        self.assertEqual(unwrap_helper_url(wrapped, s), "http://xhslink.com/o/abc123")
        self.assertEqual(unwrap_helper_url(NOTE_URL, s), NOTE_URL)


class TestResolveLink(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.settings = Settings()
        self.seen: list[httpx.Request] = []

    def _client(self, handler) -> httpx.AsyncClient:
        def record(request: httpx.Request) -> httpx.Response:
            self.seen.append(request)
            return handler(request)

        return httpx.AsyncClient(transport=httpx.MockTransport(record))

    async def test_head_redirect_followed(self):
        def handler(request):
            if request.url.host == "xhslink.com":
                return httpx.Response(302, headers={"Location": NOTE_URL})
            return httpx.Response(200)

        async with self._client(handler) as client:
            target = await resolve_link(client, "http://xhslink.com/o/abc123", self.settings)

        self.assertEqual(target.canonical_url, NOTE_URL)
        self.assertEqual(target.original_url, "http://xhslink.com/o/abc123")
        self.assertIsNone(target.resolution_error)
        self.assertTrue(all(r.method == "HEAD" for r in self.seen))

    async def test_ranged_get_when_head_raises(self):
        def handler(request):
            if request.method == "HEAD":
                raise httpx.ConnectError("head refused", request=request)
            if request.url.host == "xhslink.com":
                return httpx.Response(302, headers={"Location": NOTE_URL})
            return httpx.Response(206, text="<html>")

        async with self._client(handler) as client:
            target = await resolve_link(client, "http://xhslink.com/o/abc123", self.settings)

        self.assertEqual(target.canonical_url, NOTE_URL)
        self.assertIsNone(target.resolution_error)
        gets = [r for r in self.seen if r.method == "GET"]
        self.assertEqual(gets[0].headers["Range"], "bytes=0-8191")

    async def test_ranged_get_when_head_stays_on_short_host(self):
        def handler(request):
            if request.method == "HEAD":
                return httpx.Response(200)
            if request.url.host == "xhslink.com":
                return httpx.Response(301, headers={"Location": NOTE_URL})
            return httpx.Response(200, text="<html>")

        async with self._client(handler) as client:
            target = await resolve_link(client, "http://xhslink.com/o/abc123", self.settings)

        self.assertEqual(target.canonical_url, NOTE_URL)

    async def test_total_failure_keeps_original_url(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        async with self._client(handler) as client:
            target = await resolve_link(client, "http://xhslink.com/o/abc123", self.settings)

        self.assertEqual(target.canonical_url, "http://xhslink.com/o/abc123")
        self.assertTrue(target.resolution_error.startswith("Failed to resolve short URL"))

    async def test_follow_short_link_raises_on_total_failure(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with self._client(handler) as client:
            with self.assertRaises(ResolutionFailed):
                await follow_short_link(client, "http://xhslink.com/o/abc123", self.settings)

    async def test_non_short_link_is_not_probed(self):
        def handler(request):
            raise AssertionError("no request expected")

        async with self._client(handler) as client:
            target = await resolve_link(client, NOTE_URL, self.settings)

        self.assertEqual(target.canonical_url, NOTE_URL)
        self.assertEqual(self.seen, [])


if __name__ == "__main__":
    unittest.main()
