import unittest

from xhs_relay.core.config import Settings
from xhs_relay.domain.models import CandidateLink, MediaKind, SourcePass
from xhs_relay.services.classifier import ExclusionRules, classify, classify_all


def _cand(url: str) -> CandidateLink:
    return CandidateLink(url=url, source_pass=SourcePass.GENERIC_SWEEP)


class TestClassifier(unittest.TestCase):
    def setUp(self):
        self.rules = ExclusionRules()

    def _kind(self, url: str) -> MediaKind:
        return classify(_cand(url), self.rules).kind

    def _reason(self, url: str) -> str:
        link = classify(_cand(url), self.rules)
        self.assertEqual(link.kind, MediaKind.REJECTED, url)
        return link.reject_reason

    def test_extensionless_cdn_image(self):
        url = "https://sns-webpic-qc.xhscdn.com/202406/1040g2sg3abcdef!nd_dft_wlteh_webp_3"
        self.assertEqual(self._kind(url), MediaKind.IMAGE)

    def test_video_by_extension_and_manifest(self):
        self.assertEqual(self._kind("https://sns-video-bd.xhscdn.com/stream/110/258/01e6abc_258.mp4"), MediaKind.VIDEO)
        self.assertEqual(self._kind("https://cdn.example.com/hls/master_playlist.m3u8"), MediaKind.VIDEO)

    def test_extensionless_video_tag_stream_is_video(self):
        url = "https://sns-video-bd.xhscdn.com/stream/110/258/01e6abcdef1234567890_258"
        link = classify(CandidateLink(url=url, source_pass=SourcePass.VIDEO_TAG), self.rules)
        self.assertEqual(link.kind, MediaKind.VIDEO)
        # same stream found by the generic sweep: the video host decides
        self.assertEqual(self._kind(url), MediaKind.VIDEO)

    def test_video_tag_with_image_extension_stays_image(self):
        url = "https://sns-webpic-qc.xhscdn.com/202406/1040g2sg3abcdef.jpg"
        link = classify(CandidateLink(url=url, source_pass=SourcePass.VIDEO_TAG), self.rules)
        self.assertEqual(link.kind, MediaKind.IMAGE)

    def test_ui_keywords_rejected(self):
        self.assertEqual(
            self._reason("https://fe-static.xhscdn.com/formula-static/images/logo_white.png"),
            "keyword:logo",
        )
        self.assertEqual(
            self._reason("https://sns-avatar-qc.xhscdn.com/avatar/1040g2jo3abcdef?imageView2/2/w/120/format/jpg"),
            "keyword:avatar",
        )

    def test_tracker_hosts_rejected(self):
        self.assertEqual(self._reason("https://googleads.g.doubleclick.net/pagead/viewthroughconversion"), "tracker")
        self.assertEqual(self._reason("https://pagead2.googlesyndication.com/pagead/js/adsbygoogle.js"), "tracker")

    def test_short_share_link_rejected(self):
        self.assertEqual(self._reason("http://xhslink.com/o/abcdefghijk"), "short-link")

    def test_ad_path_segment_rejected(self):
        self.assertEqual(self._reason("https://cdn.example.com/ads/summer_campaign_2024.jpg"), "ad-path")

    def test_ad_substring_is_not_an_ad(self):
        url = "https://cdn.example.com/uploads/headphones_review_01.jpg"
        self.assertEqual(self._kind(url), MediaKind.IMAGE)

    def test_brand_marker_only_checked_in_path(self):
        self.assertEqual(self._reason("https://cdn.example.com/xiaohongshu/share_cover.png"), "path:xiaohongshu")
        self.assertEqual(self._kind("https://ci.xiaohongshu.com/1040g2sg3abcdef.jpg"), MediaKind.IMAGE)

    def test_short_last_segment_rejected_unless_long_id(self):
        self.assertEqual(self._reason("https://sns-webpic-qc.xhscdn.com/abc"), "short-segment")
        self.assertEqual(self._kind("https://sns-img-qc.xhscdn.com/1234567890123/a1"), MediaKind.IMAGE)

    def test_low_resolution_resize_rejected(self):
        url = "https://sns-webpic-qc.xhscdn.com/202406/1040g2sg3abcdef?imageView2/2/w/360/format/webp"
        self.assertEqual(self._reason(url), "low-resolution:360")

    def test_large_resize_kept(self):
        url = "https://sns-webpic-qc.xhscdn.com/202406/1040g2sg3abcdef?imageView2/2/w/1080/format/webp"
        self.assertEqual(self._kind(url), MediaKind.IMAGE)

    def test_non_media_page_rejected(self):
        self.assertEqual(self._reason("https://www.example.com/article/some-long-page-name"), "not-media")

    def test_non_http_scheme_rejected(self):
        self.assertEqual(self._reason("ftp://files.example.com/photo_collection.jpg"), "scheme")

    def test_extra_keywords_from_settings(self):
        rules = ExclusionRules.from_settings(Settings(extra_exclude_keywords=("sticker",)))
        link = classify(_cand("https://cdn.example.com/packs/sticker_pack_01.png"), rules)
        self.assertEqual(link.reject_reason, "keyword:sticker")

    def test_classify_all_keeps_order(self):
        urls = [
            "https://cdn.example.com/media/clip_final.mp4",
            "https://fe-static.xhscdn.com/formula-static/images/logo_white.png",
            "https://sns-webpic-qc.xhscdn.com/202406/1040g2sg3abcdef!nd_dft_wlteh_webp_3",
        ]
        kinds = [c.kind for c in classify_all([_cand(u) for u in urls], self.rules)]
        self.assertEqual(kinds, [MediaKind.VIDEO, MediaKind.REJECTED, MediaKind.IMAGE])


if __name__ == "__main__":
    unittest.main()
