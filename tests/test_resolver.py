import pytest

from classroom_extractor.models import ResourceRef, VideoRef
from classroom_extractor.resolver import (ResolvedVideo, canonical_video_url, classify_embed, is_content_image,
                                          is_internal, is_resource_link, links_in_text, merge_resources,
                                          resolve_video)


@pytest.mark.parametrize("field", ["url", "src", "embedUrl"])
def test_every_url_field_resolves_the_same(field):
    ref = {field: "https://www.youtube.com/watch?v=abc", "platform": "youtube"}
    assert resolve_video(ref) == ResolvedVideo("https://www.youtube.com/watch?v=abc", "youtube")


def test_url_field_wins_over_src_and_embed_url():
    ref = {"url": "https://a.example/1", "src": "https://a.example/2", "embedUrl": "https://a.example/3"}
    assert resolve_video(ref).url == "https://a.example/1"


def test_platform_falls_back_to_type_then_unknown():
    assert resolve_video({"src": "https://x.example/v", "type": "Loom"}).platform == "loom"
    assert resolve_video({"src": "https://x.example/v"}).platform == "unknown"
    assert resolve_video({"src": "https://x.example/v", "platform": "vimeo", "type": "iframe"}).platform == "vimeo"


def test_loom_embed_is_rewritten_to_share():
    resolved = resolve_video({"src": "https://www.loom.com/embed/abc123", "type": "loom"})
    assert resolved == ResolvedVideo("https://www.loom.com/share/abc123", "loom")


def test_vimeo_player_url_becomes_public_page():
    resolved = resolve_video(VideoRef(src="https://player.vimeo.com/video/555?h=9f", type="vimeo"))
    assert resolved.url == "https://vimeo.com/555"


def test_vimeo_player_url_without_id_is_kept():
    assert canonical_video_url("https://player.vimeo.com/video/latest") == "https://player.vimeo.com/video/latest"


def test_other_urls_are_unchanged():
    url = "https://stream.mux.com/xyz.m3u8?token=t"
    assert canonical_video_url(url) == url


@pytest.mark.parametrize("ref", [{}, {"url": ""}, {"platform": "loom"}, {"url": 42}])
def test_reference_without_usable_url_is_none(ref):
    assert resolve_video(ref) is None


@pytest.mark.parametrize("src,expected", [
    ("https://www.loom.com/embed/abc", "loom"),
    ("https://player.vimeo.com/video/1", "vimeo"),
    ("https://www.youtube.com/embed/x", "youtube"),
    ("https://youtu.be/x", "youtube"),
    ("https://fast.wistia.net/embed/iframe/x", "wistia"),
    ("https://player.example.com/x", "iframe"),
    ("https://js.stripe.com/v3/checkout", None),
    ("https://www.google.com/maps/embed", None),
    ("", None),
    (None, None),
])
def test_classify_embed(src, expected):
    assert classify_embed(src) == expected


def test_is_internal_uses_the_host():
    assert is_internal("https://www.skool.com/acme")
    assert is_internal("https://skool.com/acme")
    assert not is_internal("https://notskool.com/x")
    assert not is_internal("https://example.com/?next=skool.com")


@pytest.mark.parametrize("href,expected", [
    ("https://drive.google.com/file/d/1", True),
    ("https://www.skool.com/acme/download/abc", True),
    ("https://files.skool.com/file/abc.pdf", True),
    ("https://www.skool.com/@someone", False),
    ("#", False),
    ("javascript:void(0)", False),
    ("", False),
])
def test_is_resource_link(href, expected):
    assert is_resource_link(href) is expected


def test_is_content_image():
    assert is_content_image("https://cdn.example.com/diagram.png")
    assert not is_content_image("https://cdn.example.com/Avatar/u1.png")
    assert not is_content_image("https://cdn.example.com/favicon.ico")
    assert not is_content_image("")


def test_links_in_text_skips_internal_and_duplicates():
    text = ("See https://example.com/guide.pdf and https://www.skool.com/acme/about, "
            "again https://example.com/guide.pdf or (https://tools.example.org/x).")
    links = links_in_text(text)
    assert [r.link for r in links] == ["https://example.com/guide.pdf", "https://tools.example.org/x"]
    assert links[0].label == "https://example.com/guide.pdf"
    assert links[0].is_download is False


def test_merge_resources_keeps_first_occurrence():
    existing = [ResourceRef(href="https://a.example/1", text="one")]
    extra = [ResourceRef(url="https://a.example/1", title="dup"), ResourceRef(href="https://a.example/2"),
             ResourceRef(text="no link")]
    merged = merge_resources(existing, extra)
    assert [r.link for r in merged] == ["https://a.example/1", "https://a.example/2"]
    assert merged[0].label == "one"
