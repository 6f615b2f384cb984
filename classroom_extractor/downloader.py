"""Video and resource download phases.

Both phases read ``classroom-data.json``, flatten it into work items with a fixed
destination path each, and push them through a :class:`DownloadPool`. An item whose
destination already holds data is skipped, so a phase can be re-run after a partial
failure and only fetches what is missing. The video phase also keeps an append-only
manifest of finished files, which lets users move downloaded videos elsewhere without
them being fetched again.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Iterator, List, Optional, Set, Tuple

import httpx
from pydantic import ValidationError

from .errors import ClassroomError, NoWorkItemsError
from .fetchers import MediaFetcher, build_http_client, download_file, filename_from_url
from .models import ClassroomTree, DownloadReport, DownloadResult, DownloadStatus, Lesson, Module
from .pool import DownloadPool
from .resolver import resolve_video
from .settings import Settings

logger = logging.getLogger(__name__)

MANIFEST_FILE = "downloaded-videos-manifest.txt"
VIDEO_REPORT_FILE = "download-report.json"
RESOURCE_REPORT_FILE = "resources-download-report.json"

_UNSAFE_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def sanitize(name: str) -> str:
    """Strip characters that are invalid in file names and cap the length."""
    name = _UNSAFE_CHARS.sub("", name or "")
    return re.sub(r"\s+", " ", name).strip()[:200]


@dataclass
class WorkItem:
    module: str
    lesson: str
    url: str
    destination: Path
    kind: str = "video"
    platform: Optional[str] = None


def load_tree(path: Path) -> ClassroomTree:
    if not path.exists():
        raise ClassroomError(f"Classroom data not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return ClassroomTree.model_validate(data)
    except (ValueError, ValidationError) as e:
        raise ClassroomError(f"Classroom data in {path} is unreadable: {e}")


def lesson_folders(tree: ClassroomTree) -> Iterator[Tuple[Module, Lesson, str, str]]:
    """Yield each lesson with its sanitized module and lesson folder names.

    Two lessons of the same module whose titles sanitize to the same name would share a
    folder and overwrite each other's files; every repeat after the first gets the lesson
    id appended.
    """
    taken: Set[Tuple[str, str]] = set()
    for module in tree.modules:
        module_name = sanitize(module.title) or "Untitled Module"
        for lesson in module.lessons:
            lesson_name = sanitize(lesson.title) or "Untitled Lesson"
            if (module_name, lesson_name) in taken:
                base = lesson_name
                lesson_name = f"{base} [{lesson.lesson_id}]" if lesson.lesson_id else f"{base} (2)"
                n = 2
                while (module_name, lesson_name) in taken:
                    n += 1
                    lesson_name = f"{base} ({n})"
            taken.add((module_name, lesson_name))
            yield module, lesson, module_name, lesson_name


def collect_videos(tree: ClassroomTree, base_dir: Path, module_filter: Optional[str] = None) -> List[WorkItem]:
    items = []
    for module, lesson, module_name, lesson_name in lesson_folders(tree):
        if module_filter and module.title != module_filter:
            continue
        count = len(lesson.videos)
        for i, video in enumerate(lesson.videos):
            resolved = resolve_video(video)
            if resolved is None:
                continue
            filename = "video.mp4" if count == 1 else f"video-{i + 1}.mp4"
            items.append(WorkItem(
                module=module_name,
                lesson=lesson_name,
                url=resolved.url,
                destination=base_dir / module_name / lesson_name / filename,
                platform=resolved.platform,
            ))
    return items


def _unique(filename: str, used: Set[str]) -> str:
    candidate = filename
    stem, dot, ext = filename.rpartition(".")
    if not dot:
        stem, ext = filename, ""
    n = 1
    while candidate.lower() in used:
        n += 1
        candidate = f"{stem} ({n}).{ext}" if ext else f"{stem} ({n})"
    used.add(candidate.lower())
    return candidate


def resource_filename(resource, url: str) -> str:
    base = sanitize(resource.label or filename_from_url(url) or "") or "resource"
    # MIME types such as application/pdf keep only their subtype
    ext = sanitize((resource.type or "").rsplit("/", 1)[-1])
    if ext and not base.lower().endswith(f".{ext}".lower()):
        base += f".{ext}"
    return base


def collect_resources(tree: ClassroomTree, base_dir: Path) -> List[WorkItem]:
    """Resources first, then images, each under its own top-level folder."""
    resources = []
    images = []
    for _, lesson, module_name, lesson_name in lesson_folders(tree):
        used: Set[str] = set()
        for resource in lesson.resources:
            url = resource.link
            if not url:
                continue
            filename = _unique(resource_filename(resource, url), used)
            resources.append(WorkItem(
                module=module_name, lesson=lesson_name, url=url, kind="resource",
                destination=base_dir / "resources" / module_name / lesson_name / filename,
            ))
        used = set()
        for i, image in enumerate(lesson.images):
            url = image.link
            if not url:
                continue
            filename = _unique(filename_from_url(url) or f"image-{i + 1}.jpg", used)
            images.append(WorkItem(
                module=module_name, lesson=lesson_name, url=url, kind="image",
                destination=base_dir / "images" / module_name / lesson_name / filename,
            ))
    return resources + images


class DownloadManifest:
    """Destination paths of videos that finished downloading in any earlier run."""

    def __init__(self, path: Path, entries: Optional[Set[str]] = None):
        self.path = path
        self.entries = entries if entries is not None else set()

    @classmethod
    def load(cls, path: Path) -> "DownloadManifest":
        entries = set()
        if path.exists():
            with open(path, "r", encoding="utf-8") as f:
                entries = {line.strip() for line in f if line.strip()}
            logger.info(f"Loaded manifest: {len(entries)} previously downloaded videos")
        return cls(path, entries)

    def __contains__(self, destination) -> bool:
        return str(destination) in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def record(self, destination: Path) -> None:
        # one append per item, never a rewrite, so concurrent completions cannot lose entries
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(f"{destination}\n")
        self.entries.add(str(destination))


def has_content(path: Path) -> bool:
    return path.is_file() and path.stat().st_size > 0


Fetch = Callable[[WorkItem], Awaitable[None]]


class DownloadEngine:
    """Runs one phase's work items through a pool and records every outcome."""

    def __init__(self, fetch: Fetch, report: DownloadReport, concurrency: int,
                 manifest: Optional[DownloadManifest] = None, force: bool = False):
        self.fetch = fetch
        self.report = report
        self.pool = DownloadPool(concurrency)
        self.manifest = manifest
        self.force = force
        self._started = 0

    async def run(self, items: List[WorkItem]) -> DownloadReport:
        futures = [self.pool.submit(lambda item=item: self._process(item, len(items))) for item in items]
        results = await asyncio.gather(*futures, return_exceptions=True)
        for r in results:
            if isinstance(r, Exception):
                logger.warning(f"Download task returned exception: {r}")
        self.report.finish()
        return self.report

    def _result(self, item: WorkItem, status: DownloadStatus, error: Optional[str] = None) -> DownloadResult:
        return DownloadResult(
            module=item.module,
            lesson=item.lesson,
            platform=item.platform,
            kind=None if item.kind == "video" else item.kind,
            url=item.url,
            output_path=str(item.destination),
            status=status,
            error=error,
        )

    async def _process(self, item: WorkItem, total: int) -> DownloadResult:
        self._started += 1
        label = f"[{self._started}/{total}]"
        where = f"{item.module} / {item.lesson}"
        try:
            result = await self._attempt(item, label, where)
        except Exception as e:
            logger.warning(f"{label} FAIL {where}: {e}")
            result = self._result(item, DownloadStatus.FAILED, error=str(e))
        self.report.add(result)
        return result

    async def _attempt(self, item: WorkItem, label: str, where: str) -> DownloadResult:
        if not self.force and has_content(item.destination):
            logger.info(f"{label} SKIP (exists) {where} / {item.destination.name}")
            return self._result(item, DownloadStatus.SKIPPED)
        if self.manifest is not None and item.destination in self.manifest:
            logger.info(f"{label} SKIP (manifest) {where} / {item.destination.name}")
            return self._result(item, DownloadStatus.SKIPPED)

        item.destination.parent.mkdir(parents=True, exist_ok=True)
        platform = f"[{item.platform}] " if item.platform else ""
        logger.info(f"{label} Downloading {platform}{item.kind}: {where} / {item.destination.name}")
        logger.debug(f"     URL: {item.url}")
        await self.fetch(item)
        logger.info(f"{label} OK  {where} / {item.destination.name}")

        if self.manifest is not None:
            try:
                self.manifest.record(item.destination)
            except OSError as e:
                logger.warning(f"Could not append to manifest {self.manifest.path}: {e}")
        return self._result(item, DownloadStatus.SUCCESS)


def write_report(report: DownloadReport, path: Path) -> bool:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(report.to_json(), f, ensure_ascii=False, indent=2)
    except OSError as e:
        logger.error(f"Failed to write report {path}: {e}")
        return False
    return True


def log_summary(title: str, report: DownloadReport, report_path: Path) -> None:
    logger.info(f"--- {title} ---")
    logger.info(f"  Succeeded: {report.succeeded}")
    if report.skipped:
        logger.info(f"  Skipped:   {report.skipped}")
    if report.failed:
        logger.warning(f"  Failed:    {report.failed}")
    logger.info(f"  Report:    {report_path}")


async def download_videos(settings: Settings, community: str, fetcher: Optional[MediaFetcher] = None,
                          module_filter: Optional[str] = None, concurrency: Optional[int] = None) -> DownloadReport:
    community_dir = settings.community_dir(community)
    tree = load_tree(settings.classroom_data_path(community))
    items = collect_videos(tree, community_dir / "videos", module_filter)
    if not items:
        raise NoWorkItemsError(f"No videos found in classroom data for {community}")
    logger.info(f"Found {len(items)} video(s) across {len(tree.modules)} module(s)")

    fetcher = fetcher or MediaFetcher(settings)
    manifest = DownloadManifest.load(community_dir / MANIFEST_FILE)
    report = DownloadReport(community=community, total_videos=len(items))

    async def fetch(item: WorkItem) -> None:
        await fetcher.fetch_video(item.url, item.destination, item.platform or "unknown")

    engine = DownloadEngine(fetch, report, concurrency or settings.MAX_CONCURRENT_DOWNLOADS, manifest=manifest)
    await engine.run(items)

    report_path = community_dir / VIDEO_REPORT_FILE
    write_report(report, report_path)
    log_summary("Download Summary", report, report_path)
    return report


async def download_resources(settings: Settings, community: str, client: Optional[httpx.AsyncClient] = None,
                             force: bool = False, concurrency: Optional[int] = None) -> DownloadReport:
    community_dir = settings.community_dir(community)
    tree = load_tree(settings.classroom_data_path(community))
    items = collect_resources(tree, community_dir)
    if not items:
        raise NoWorkItemsError(f"No resources or images found in classroom data for {community}")
    n_resources = sum(1 for item in items if item.kind == "resource")
    logger.info(f"Found {n_resources} resource(s) and {len(items) - n_resources} image(s)")

    report = DownloadReport(community=community, total_items=len(items))
    own_client = client is None
    client = client or build_http_client(settings)
    try:
        async def fetch(item: WorkItem) -> None:
            await download_file(client, item.url, item.destination)

        engine = DownloadEngine(fetch, report, concurrency or settings.MAX_CONCURRENT_DOWNLOADS, force=force)
        await engine.run(items)
    finally:
        if own_client:
            await client.aclose()

    report_path = community_dir / RESOURCE_REPORT_FILE
    write_report(report, report_path)
    log_summary("Resources Download Summary", report, report_path)
    return report


def clean_partial(settings: Settings, community: str) -> int:
    """Delete video files left behind by interrupted downloads.

    A video file on disk that the manifest does not list never finished downloading.
    """
    community_dir = settings.community_dir(community)
    tree = load_tree(settings.classroom_data_path(community))
    manifest = DownloadManifest.load(community_dir / MANIFEST_FILE)
    cleaned = 0
    for item in collect_videos(tree, community_dir / "videos"):
        path = item.destination
        if path.is_file() and path not in manifest:
            size_mb = path.stat().st_size / 1024 / 1024
            logger.info(f"REMOVING partial: {item.module} / {item.lesson} ({size_mb:.0f}MB)")
            path.unlink()
            cleaned += 1
    logger.info(f"Cleaned {cleaned} partial files")
    return cleaned
