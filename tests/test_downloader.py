import json

import httpx
import pytest

from classroom_extractor.downloader import (MANIFEST_FILE, RESOURCE_REPORT_FILE, VIDEO_REPORT_FILE, DownloadManifest,
                                            clean_partial, collect_resources, collect_videos, download_resources,
                                            download_videos, load_tree, resource_filename, sanitize)
from classroom_extractor.errors import ClassroomError, ExternalToolError, NoWorkItemsError
from classroom_extractor.fetchers import build_http_client
from classroom_extractor.models import ClassroomTree, ResourceRef

from .conftest import lesson, tree


class FakeFetcher:
    def __init__(self, failing=()):
        self.calls = []
        self.failing = set(failing)

    async def fetch_video(self, url, output_path, platform):
        self.calls.append((url, output_path, platform))
        if url in self.failing:
            raise ExternalToolError("yt-dlp", 1, "ERROR: unavailable")
        output_path.write_bytes(b"video")


def video_tree():
    return tree(
        ("Module 1", [
            lesson("Welcome", videos=[{"src": "https://www.loom.com/embed/aaa", "type": "loom"}]),
            lesson("Deep Dive", videos=[
                {"url": "https://vimeo.com/1", "platform": "vimeo"},
                {"embedUrl": "https://player.vimeo.com/video/2"},
                {"platform": "youtube"},
            ]),
        ]),
        ("Module 2", [
            lesson("Stream", videos=[{"src": "https://stream.mux.com/p.m3u8", "type": "mux"}]),
            lesson("Reading only"),
        ]),
    )


def test_sanitize():
    assert sanitize('What?  Why: "now"/later ') == "What Why nowlater"
    assert len(sanitize("x" * 300)) == 200


def test_load_tree_requires_the_data_file(tmp_path):
    with pytest.raises(ClassroomError):
        load_tree(tmp_path / "missing.json")


def test_collect_videos_names_and_platforms(tmp_path):
    items = collect_videos(ClassroomTree.model_validate(video_tree()), tmp_path)
    assert [(i.lesson, i.destination.name, i.platform, i.url) for i in items] == [
        ("Welcome", "video.mp4", "loom", "https://www.loom.com/share/aaa"),
        ("Deep Dive", "video-1.mp4", "vimeo", "https://vimeo.com/1"),
        ("Deep Dive", "video-2.mp4", "unknown", "https://vimeo.com/2"),
        ("Stream", "video.mp4", "mux", "https://stream.mux.com/p.m3u8"),
    ]
    assert items[0].destination == tmp_path / "Module 1" / "Welcome" / "video.mp4"


def test_module_filter(tmp_path):
    items = collect_videos(ClassroomTree.model_validate(video_tree()), tmp_path, module_filter="Module 2")
    assert [i.lesson for i in items] == ["Stream"]


def test_colliding_lesson_titles_get_distinct_folders(tmp_path):
    data = tree(("Basics", [
        lesson("Intro", videos=[{"src": "https://a.example/1"}], lesson_id="l1"),
        lesson("Intro?", videos=[{"src": "https://a.example/2"}], lesson_id="l2"),
        lesson("Intro", videos=[{"src": "https://a.example/3"}]),
    ]))
    data["modules"][0]["lessons"][2]["lessonId"] = None
    items = collect_videos(ClassroomTree.model_validate(data), tmp_path)
    folders = [i.destination.parent.name for i in items]
    assert folders == ["Intro", "Intro [l2]", "Intro (2)"]
    assert len({i.destination for i in items}) == 3


def test_resource_filename():
    assert resource_filename(ResourceRef(text="Workbook", type="pdf"), "https://x/a") == "Workbook.pdf"
    assert resource_filename(ResourceRef(title="Slides.PDF", type="pdf"), "https://x/a") == "Slides.PDF"
    assert resource_filename(ResourceRef(), "https://x/files/notes%20v2.txt") == "notes v2.txt"
    assert resource_filename(ResourceRef(), "https://x/") == "resource"


def test_collect_resources_puts_resources_before_images(tmp_path):
    data = tree(("Module 1", [lesson(
        "Tools",
        resources=[{"href": "https://a.example/one", "text": "Sheet"}, {"url": "https://a.example/two", "title": "Sheet"},
                   {"text": "no link"}],
        images=["https://cdn.example/pic.png", {"alt": "nothing"}, "https://cdn.example/"],
    )]))
    items = collect_resources(ClassroomTree.model_validate(data), tmp_path)
    assert [(i.kind, i.destination.relative_to(tmp_path).as_posix()) for i in items] == [
        ("resource", "resources/Module 1/Tools/Sheet"),
        ("resource", "resources/Module 1/Tools/Sheet (2)"),
        ("image", "images/Module 1/Tools/pic.png"),
        ("image", "images/Module 1/Tools/image-3.jpg"),
    ]


async def test_video_phase_is_idempotent(settings, write_tree):
    write_tree("acme", video_tree())
    fetcher = FakeFetcher()

    report = await download_videos(settings, "acme", fetcher=fetcher)
    assert len(fetcher.calls) == 4
    assert (report.succeeded, report.failed, report.skipped) == (4, 0, 0)
    assert report.total_videos == 4

    fetcher.calls.clear()
    report = await download_videos(settings, "acme", fetcher=fetcher)
    assert fetcher.calls == []
    assert (report.succeeded, report.failed, report.skipped) == (0, 0, 4)


async def test_manifest_skips_videos_moved_off_disk(settings, write_tree):
    write_tree("acme", video_tree())
    fetcher = FakeFetcher()
    await download_videos(settings, "acme", fetcher=fetcher)

    community_dir = settings.community_dir("acme")
    manifest = DownloadManifest.load(community_dir / MANIFEST_FILE)
    assert len(manifest) == 4
    moved = community_dir / "videos" / "Module 1" / "Welcome" / "video.mp4"
    assert moved in manifest
    moved.unlink()

    fetcher.calls.clear()
    report = await download_videos(settings, "acme", fetcher=fetcher)
    assert fetcher.calls == []
    assert report.skipped == 4
    assert not moved.exists()


async def test_failures_are_recorded_and_do_not_stop_the_phase(settings, write_tree):
    write_tree("acme", video_tree())
    fetcher = FakeFetcher(failing={"https://vimeo.com/1"})

    report = await download_videos(settings, "acme", fetcher=fetcher, concurrency=1)
    assert (report.succeeded, report.failed, report.skipped) == (3, 1, 0)
    assert report.succeeded + report.failed + report.skipped == report.total_videos
    failed = [r for r in report.results if r.status == "failed"]
    assert failed[0].url == "https://vimeo.com/1"
    assert "yt-dlp exited with code 1" in failed[0].error

    saved = json.loads((settings.community_dir("acme") / VIDEO_REPORT_FILE).read_text())
    assert saved["failed"] == 1
    assert saved["totalVideos"] == 4
    assert len(saved["results"]) == 4

    manifest = DownloadManifest.load(settings.community_dir("acme") / MANIFEST_FILE)
    assert len(manifest) == 3

    fetcher.failing.clear()
    fetcher.calls.clear()
    report = await download_videos(settings, "acme", fetcher=fetcher)
    assert [c[0] for c in fetcher.calls] == ["https://vimeo.com/1"]
    assert (report.succeeded, report.skipped) == (1, 3)


async def test_empty_files_are_downloaded_again(settings, write_tree):
    write_tree("acme", video_tree())
    target = settings.community_dir("acme") / "videos" / "Module 2" / "Stream" / "video.mp4"
    target.parent.mkdir(parents=True)
    target.write_bytes(b"")
    fetcher = FakeFetcher()
    await download_videos(settings, "acme", fetcher=fetcher, module_filter="Module 2")
    assert [c[1] for c in fetcher.calls] == [target]


async def test_nothing_to_download_raises(settings, write_tree):
    write_tree("acme", tree(("Module", [lesson("Text", videos=[{"platform": "loom"}])])))
    with pytest.raises(NoWorkItemsError):
        await download_videos(settings, "acme", fetcher=FakeFetcher())
    with pytest.raises(NoWorkItemsError):
        await download_resources(settings, "acme")


def test_clean_partial_removes_unrecorded_files(settings, write_tree):
    write_tree("acme", video_tree())
    videos = settings.community_dir("acme") / "videos"
    done = videos / "Module 1" / "Welcome" / "video.mp4"
    partial = videos / "Module 2" / "Stream" / "video.mp4"
    for path in (done, partial):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"data")
    DownloadManifest(settings.community_dir("acme") / MANIFEST_FILE).record(done)

    assert clean_partial(settings, "acme") == 1
    assert done.exists()
    assert not partial.exists()


def files_handler(request):
    if request.url.path == "/sheet":
        return httpx.Response(200, content=b"a,b\n1,2\n")
    if request.url.path == "/img/pic.png":
        return httpx.Response(200, content=b"\x89PNG")
    return httpx.Response(404)


async def test_resource_phase(settings, write_tree):
    write_tree("acme", tree(("Module 1", [lesson(
        "Tools",
        resources=[{"href": "https://files.example/sheet", "text": "Budget", "type": "csv"},
                   {"href": "https://files.example/gone", "text": "Gone"}],
        images=["https://cdn.example/img/pic.png"],
    )])))
    community_dir = settings.community_dir("acme")

    async with build_http_client(settings, transport=httpx.MockTransport(files_handler)) as client:
        report = await download_resources(settings, "acme", client=client)
        assert report.total_items == 3
        assert (report.succeeded, report.failed, report.skipped) == (2, 1, 0)
        assert (community_dir / "resources" / "Module 1" / "Tools" / "Budget.csv").read_bytes() == b"a,b\n1,2\n"
        assert (community_dir / "images" / "Module 1" / "Tools" / "pic.png").read_bytes() == b"\x89PNG"
        assert not (community_dir / "resources" / "Module 1" / "Tools" / "Gone").exists()
        failed = [r for r in report.results if r.status == "failed"][0]
        assert failed.kind == "resource"
        assert "HTTP 404" in failed.error

        report = await download_resources(settings, "acme", client=client)
        assert (report.succeeded, report.failed, report.skipped) == (0, 1, 2)

        report = await download_resources(settings, "acme", client=client, force=True)
        assert (report.succeeded, report.failed, report.skipped) == (2, 1, 0)

    saved = json.loads((community_dir / RESOURCE_REPORT_FILE).read_text())
    assert saved["totalItems"] == 3


def test_unreadable_tree_is_a_classroom_error(tmp_path):
    path = tmp_path / "classroom-data.json"
    path.write_text("{truncated")
    with pytest.raises(ClassroomError, match="unreadable"):
        load_tree(path)
    path.write_text(json.dumps({"modules": []}))
    with pytest.raises(ClassroomError, match="unreadable"):
        load_tree(path)


def test_tree_with_numeric_ids_and_missing_titles(tmp_path):
    path = tmp_path / "classroom-data.json"
    path.write_text(json.dumps({
        "community": "acme",
        "scrapedAt": "2025-11-02T08:15:00.000Z",
        "modules": [{"title": "Course One", "courseId": 101, "lessons": [
            {"title": None, "lessonId": 7, "videos": [{"src": "https://www.loom.com/embed/a", "duration": "12:30"}]},
        ]}],
    }))
    items = collect_videos(load_tree(path), tmp_path / "videos")
    assert len(items) == 1
    assert items[0].destination == tmp_path / "videos" / "Course One" / "Untitled Lesson" / "video.mp4"
    assert items[0].url == "https://www.loom.com/share/a"


def test_mime_type_becomes_a_plain_extension():
    name = resource_filename(ResourceRef(text="Workbook", type="application/pdf"), "https://x/a")
    assert name == "Workbook.pdf"
    assert resource_filename(ResourceRef(text="Notes", type="../txt"), "https://x/a") == "Notes.txt"
