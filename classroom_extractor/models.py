"""Classroom tree and download report records.

The tree may have been written by older extractor versions, so each reference type
accepts every historical field-name variant and exposes one accessor that reads them in a
fixed order. Scalar fields are coerced leniently: numeric ids become strings, and values
of the wrong type become empty instead of failing the whole tree. Only a reference with
no usable link at all is dropped when the tree is loaded.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def optional_text(v: Any) -> Optional[str]:
    if isinstance(v, str):
        return v
    if _is_number(v):
        return str(v)
    return None


def as_text(v: Any) -> str:
    return optional_text(v) or ""


def url_or_none(v: Any) -> Optional[str]:
    return v if isinstance(v, str) and v else None


class Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def _keep_valid(model, items: Any, require_link: bool = False) -> list:
    if not isinstance(items, list):
        return []
    kept = []
    for item in items:
        try:
            record = model.model_validate(item)
        except ValidationError as e:
            logger.debug(f"Dropping malformed {model.__name__}: {e.error_count()} error(s)")
            continue
        if require_link and not record.link:
            logger.debug(f"Dropping {model.__name__} without a link")
            continue
        kept.append(record)
    return kept


class VideoRef(Record):
    url: Optional[str] = None
    src: Optional[str] = None
    embed_url: Optional[str] = Field(default=None, alias="embedUrl")
    platform: Optional[str] = None
    type: Optional[str] = None
    duration: Optional[float] = None
    playback_id: Optional[str] = Field(default=None, alias="playbackId")
    aspect_ratio: Optional[Union[float, str]] = Field(default=None, alias="aspectRatio")
    thumbnail_url: Optional[str] = Field(default=None, alias="thumbnailUrl")

    @field_validator("url", "src", "embed_url", "thumbnail_url", mode="before")
    @classmethod
    def _links(cls, v):
        return url_or_none(v)

    @field_validator("platform", "type", "playback_id", mode="before")
    @classmethod
    def _labels(cls, v):
        return optional_text(v)

    @field_validator("duration", mode="before")
    @classmethod
    def _duration(cls, v):
        return v if _is_number(v) else None

    @field_validator("aspect_ratio", mode="before")
    @classmethod
    def _aspect_ratio(cls, v):
        return v if _is_number(v) or isinstance(v, str) else None

    @property
    def link(self) -> Optional[str]:
        for candidate in (self.url, self.src, self.embed_url):
            if candidate:
                return candidate
        return None

    @property
    def kind(self) -> str:
        return (self.platform or self.type or "unknown").lower()


class ResourceRef(Record):
    url: Optional[str] = None
    href: Optional[str] = None
    title: Optional[str] = None
    text: Optional[str] = None
    type: Optional[str] = None
    is_download: Optional[bool] = Field(default=None, alias="isDownload")

    @field_validator("url", "href", mode="before")
    @classmethod
    def _links(cls, v):
        return url_or_none(v)

    @field_validator("title", "text", "type", mode="before")
    @classmethod
    def _labels(cls, v):
        return optional_text(v)

    @field_validator("is_download", mode="before")
    @classmethod
    def _is_download(cls, v):
        return v if isinstance(v, bool) else None

    @property
    def link(self) -> Optional[str]:
        return self.url or self.href or None

    @property
    def label(self) -> Optional[str]:
        return self.title or self.text or None


class ImageRef(Record):
    src: Optional[str] = None
    url: Optional[str] = None
    alt: Optional[str] = None

    @field_validator("src", "url", mode="before")
    @classmethod
    def _links(cls, v):
        return url_or_none(v)

    @field_validator("alt", mode="before")
    @classmethod
    def _alt(cls, v):
        return optional_text(v)

    @property
    def link(self) -> Optional[str]:
        return self.src or self.url or None


class LessonContent(Record):
    markdown: str = ""

    @field_validator("markdown", mode="before")
    @classmethod
    def _none_is_empty(cls, v):
        return as_text(v)


class Lesson(Record):
    title: str = ""
    url: str = ""
    lesson_id: Optional[str] = Field(default=None, alias="lessonId")
    module: str = ""
    section_title: str = Field(default="", alias="sectionTitle")
    content: LessonContent = Field(default_factory=LessonContent)
    videos: List[VideoRef] = Field(default_factory=list)
    images: List[ImageRef] = Field(default_factory=list)
    resources: List[ResourceRef] = Field(default_factory=list)
    error: Optional[str] = None

    @field_validator("title", "url", "module", "section_title", mode="before")
    @classmethod
    def _text_fields(cls, v):
        return as_text(v)

    @field_validator("lesson_id", "error", mode="before")
    @classmethod
    def _optional_fields(cls, v):
        return optional_text(v)

    @field_validator("content", mode="before")
    @classmethod
    def _content(cls, v):
        if isinstance(v, str):
            return {"markdown": v}
        return v if isinstance(v, (dict, LessonContent)) else {}

    @field_validator("videos", mode="before")
    @classmethod
    def _videos(cls, v):
        return _keep_valid(VideoRef, v, require_link=True)

    @field_validator("resources", mode="before")
    @classmethod
    def _resources(cls, v):
        return _keep_valid(ResourceRef, v, require_link=True)

    @field_validator("images", mode="before")
    @classmethod
    def _images(cls, v):
        # bare URL strings were written by older versions
        if isinstance(v, list):
            v = [{"src": item} if isinstance(item, str) else item for item in v if item]
        return _keep_valid(ImageRef, v, require_link=True)


class Module(Record):
    title: str = ""
    course_id: Optional[str] = Field(default=None, alias="courseId")
    course_slug: Optional[str] = Field(default=None, alias="courseSlug")
    lessons: List[Lesson] = Field(default_factory=list)
    error: Optional[str] = None

    @field_validator("title", mode="before")
    @classmethod
    def _title(cls, v):
        return as_text(v)

    @field_validator("course_id", "course_slug", "error", mode="before")
    @classmethod
    def _optional_fields(cls, v):
        return optional_text(v)

    @field_validator("lessons", mode="before")
    @classmethod
    def _lessons(cls, v):
        return _keep_valid(Lesson, v)


class ClassroomTree(Record):
    community: str
    classroom_url: Optional[str] = Field(default=None, alias="classroomUrl")
    scraped_at: datetime = Field(default_factory=utc_now, alias="scrapedAt")
    modules: List[Module] = Field(default_factory=list)

    @field_validator("community", mode="before")
    @classmethod
    def _community(cls, v):
        return as_text(v)

    @field_validator("classroom_url", mode="before")
    @classmethod
    def _classroom_url(cls, v):
        return url_or_none(v)

    @field_validator("scraped_at", mode="before")
    @classmethod
    def _scraped_at(cls, v):
        return v if isinstance(v, (str, datetime)) and v else utc_now()

    @field_validator("modules", mode="before")
    @classmethod
    def _modules(cls, v):
        return _keep_valid(Module, v)

    def lessons(self):
        for module in self.modules:
            for lesson in module.lessons:
                yield module, lesson


class DownloadStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class DownloadResult(Record):
    module: str
    lesson: str
    platform: Optional[str] = None
    kind: Optional[str] = None
    url: str
    output_path: str = Field(alias="outputPath")
    status: DownloadStatus
    error: Optional[str] = None


class DownloadReport(Record):
    community: str
    started_at: datetime = Field(default_factory=utc_now, alias="startedAt")
    finished_at: Optional[datetime] = Field(default=None, alias="finishedAt")
    total_videos: Optional[int] = Field(default=None, alias="totalVideos")
    total_items: Optional[int] = Field(default=None, alias="totalItems")
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    results: List[DownloadResult] = Field(default_factory=list)

    def add(self, result: DownloadResult) -> None:
        self.results.append(result)
        if result.status is DownloadStatus.SUCCESS:
            self.succeeded += 1
        elif result.status is DownloadStatus.FAILED:
            self.failed += 1
        else:
            self.skipped += 1

    def finish(self) -> None:
        self.finished_at = utc_now()
