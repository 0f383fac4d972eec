import unittest

from xhs_relay.domain.models import SourcePass
from xhs_relay.services.media_miner import (
    MediaMiner,
    MinerConfig,
    debug_candidates,
    decode_escapes,
    normalize_candidate,
)

NOTE_HTML = r"""
<html><head><title>夏日穿搭 - 小红书</title></head>
<body>
<img src="https://sns-webpic-qc.xhscdn.com/202406/1040g2sg3abcdef!nd_dft_wlteh_webp_3" class="note-img">
<video src="https://sns-video-bd.xhscdn.com/stream/110/258/01e6abcdef_258.mp4"></video>
<div class="swiper" data-src="//sns-img-bd.xhscdn.com/spectrum/1040g0k0abcdefg"></div>
<script>window.__INITIAL_STATE__={"note":{"imageList":[{"urlDefault":"http://sns-webpic-qc.xhscdn.com/202406/1040g2sg3zyxwvu!nd_dft_wlteh_webp_3","urlPre":"http://sns-webpic-qc.xhscdn.com/202406/1040g2sg3zyxwvu!nd_prv_wlteh_webp_3"}]}}</script>
</body></html>
"""


class TestNormalize(unittest.TestCase):
    def test_decode_escapes(self):
        self.assertEqual(decode_escapes(r"http://a.com\/b"), "http://a.com/b")

    def test_entity_and_trailing_chars(self):
        self.assertEqual(
            normalize_candidate("https://a.xhscdn.com/x?a=1&amp;b=2\\"),
            "https://a.xhscdn.com/x?a=1&b=2",
        )

    def test_protocol_relative_promoted(self):
        self.assertEqual(normalize_candidate("//sns-img-bd.xhscdn.com/a"), "https://sns-img-bd.xhscdn.com/a")

    def test_percent_encoded_url_decoded(self):
        self.assertEqual(
            normalize_candidate("https%3A%2F%2Fsns-video-bd.xhscdn.com%2Fstream%2Fa.mp4"),
            "https://sns-video-bd.xhscdn.com/stream/a.mp4",
        )

    def test_decoded_url_keeps_spaces_encoded(self):
        self.assertEqual(
            normalize_candidate("https%3A%2F%2Fci.xhscdn.com%2Fmy%20clip.mp4%3Fa%3D1%26b%3D2"),
            "https://ci.xhscdn.com/my%20clip.mp4?a=1&b=2",
        )


class TestMediaMiner(unittest.TestCase):
    def setUp(self):
        self.miner = MediaMiner()

    def _urls(self, html_text):
        return [c.url for c in self.miner.mine(html_text)]

    def test_escaped_script_json_urls_decoded(self):
        urls = self._urls(NOTE_HTML)
        self.assertIn("http://sns-webpic-qc.xhscdn.com/202406/1040g2sg3zyxwvu!nd_dft_wlteh_webp_3", urls)
        self.assertIn("http://sns-webpic-qc.xhscdn.com/202406/1040g2sg3zyxwvu!nd_prv_wlteh_webp_3", urls)

    def test_every_pass_contributes(self):
        by_url = {c.url: c.source_pass for c in self.miner.mine(NOTE_HTML)}
        self.assertEqual(
            by_url["https://sns-webpic-qc.xhscdn.com/202406/1040g2sg3abcdef!nd_dft_wlteh_webp_3"],
            SourcePass.IMG_TAG,
        )
        self.assertEqual(
            by_url["https://sns-video-bd.xhscdn.com/stream/110/258/01e6abcdef_258.mp4"],
            SourcePass.VIDEO_TAG,
        )
        self.assertEqual(by_url["https://sns-img-bd.xhscdn.com/spectrum/1040g0k0abcdefg"], SourcePass.DATA_ATTR)

    def test_mining_is_idempotent_and_deduplicated(self):
        first = self._urls(NOTE_HTML)
        self.assertEqual(first, self._urls(NOTE_HTML))
        self.assertEqual(len(first), len(set(first)))

    def test_generic_sweep_catches_plain_text_urls(self):
        html_text = "<p>download: https://cdn.example.com/media/clip_final.mp4 now</p>"
        cands = self.miner.mine(html_text)
        self.assertEqual([c.url for c in cands], ["https://cdn.example.com/media/clip_final.mp4"])
        self.assertEqual(cands[0].source_pass, SourcePass.GENERIC_SWEEP)

    def test_embedded_download_url_expanded(self):
        html_text = (
            '<a href="https://helper.example.com/dl?url='
            'https%3A%2F%2Fsns-video-bd.xhscdn.com%2Fstream%2F01e6abcdef.mp4">下载</a>'
        )
        urls = self._urls(html_text)
        self.assertIn("https://sns-video-bd.xhscdn.com/stream/01e6abcdef.mp4", urls)

    def test_pass_selection_is_configuration(self):
        miner = MediaMiner(MinerConfig(passes=(SourcePass.IMG_TAG,)))
        cands = miner.mine(NOTE_HTML)
        self.assertEqual(
            [c.url for c in cands],
            ["https://sns-webpic-qc.xhscdn.com/202406/1040g2sg3abcdef!nd_dft_wlteh_webp_3"],
        )

    def test_empty_html(self):
        self.assertEqual(self.miner.mine(""), [])

    def test_debug_candidates_limited(self):
        html_text = " ".join(f"https://sns-webpic-qc.xhscdn.com/img/{i:020d}" for i in range(30))
        self.assertEqual(len(debug_candidates(self.miner.mine(html_text))), 20)


if __name__ == "__main__":
    unittest.main()
