"""Persist a classroom tree: one JSON snapshot plus one Markdown file per lesson."""

import json
import logging
import re
from pathlib import Path
from typing import Dict

from .models import ClassroomTree, Lesson

logger = logging.getLogger(__name__)

DATA_FILE = "classroom-data.json"


def slugify(text: str) -> str:
    slug = re.sub(r"[^\w\s-]", "", (text or "").lower())
    slug = re.sub(r"[\s_]+", "-", slug)
    slug = re.sub(r"-+", "-", slug).strip("-")
    return slug[:80] or "untitled"


def _seconds(duration_ms) -> int:
    return round((duration_ms or 0) / 1000)


def lesson_markdown(lesson: Lesson, module_title: str) -> str:
    md = f"# {lesson.title}\n\n"
    md += f"**Module:** {module_title}\n"
    md += f"**URL:** {lesson.url}\n\n"

    if lesson.error:
        md += f"> **Error:** {lesson.error}\n\n"

    if lesson.videos:
        md += "## Videos\n\n"
        for video in lesson.videos:
            if video.kind == "mux":
                md += f"- Mux Video ({_seconds(video.duration)}s): `{video.playback_id}`\n"
                md += f"  Stream: {video.link}\n"
                if video.thumbnail_url:
                    md += f"  Thumbnail: {video.thumbnail_url}\n"
            else:
                md += f"- [{video.kind}]({video.link})\n"
        md += "\n"

    if lesson.content.markdown:
        md += f"## Content\n\n{lesson.content.markdown}\n\n"

    if lesson.images:
        md += "## Images\n\n"
        for image in lesson.images:
            md += f"![{image.alt or ''}]({image.link})\n\n"

    if lesson.resources:
        md += "## Resources\n\n"
        for resource in lesson.resources:
            md += f"- [{resource.label or resource.link}]({resource.link})\n"
        md += "\n"

    return md


def save_classroom(tree: ClassroomTree, community_dir: Path) -> int:
    """Write the tree snapshot and the lesson files; returns the number of lesson files."""
    modules_dir = community_dir / "modules"
    modules_dir.mkdir(parents=True, exist_ok=True)

    data_path = community_dir / DATA_FILE
    with open(data_path, "w", encoding="utf-8") as f:
        json.dump(tree.to_json(), f, ensure_ascii=False, indent=2)
    logger.info(f"Saved JSON to {data_path}")

    used: Dict[str, int] = {}
    lesson_count = 0
    for module in tree.modules:
        slug = slugify(module.title)
        used[slug] = used.get(slug, 0) + 1
        if used[slug] > 1:
            slug = f"{slug}-{used[slug]}"
        module_dir = modules_dir / slug
        module_dir.mkdir(parents=True, exist_ok=True)

        for i, lesson in enumerate(module.lessons, 1):
            md_path = module_dir / f"{i:02d}-{slugify(lesson.title)}.md"
            md_path.write_text(lesson_markdown(lesson, module.title), encoding="utf-8")
            lesson_count += 1

    logger.info(f"Saved {lesson_count} lesson files")
    return lesson_count


def summarize(tree: ClassroomTree) -> Dict[str, int]:
    lessons = [lesson for _, lesson in tree.lessons()]
    videos = [video for lesson in lessons for video in lesson.videos]
    total_ms = sum(video.duration or 0 for video in videos)
    return {
        "courses": len(tree.modules),
        "lessons": len(lessons),
        "videos": len(videos),
        "minutes": round(total_ms / 60000),
    }
