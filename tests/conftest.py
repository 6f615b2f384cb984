import json

import pytest

from classroom_extractor.settings import Settings


@pytest.fixture
def settings(tmp_path):
    return Settings(
        OUTPUT_DIR=str(tmp_path / "output"),
        NAVIGATION_DELAY=0,
        HYDRATION_DELAY=0,
        MAX_CONCURRENT_DOWNLOADS=2,
    )


@pytest.fixture
def write_tree(settings):
    def _write(community, data):
        path = settings.classroom_data_path(community)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data), encoding="utf-8")
        return path
    return _write


def lesson(title, videos=(), resources=(), images=(), lesson_id=None):
    return {
        "title": title,
        "url": f"https://www.skool.com/acme/classroom/course?md={lesson_id or title}",
        "lessonId": lesson_id,
        "content": {"markdown": ""},
        "videos": list(videos),
        "resources": list(resources),
        "images": list(images),
    }


def tree(*modules, community="acme"):
    return {
        "community": community,
        "scrapedAt": "2026-01-05T10:00:00Z",
        "modules": [{"title": title, "lessons": lessons} for title, lessons in modules],
    }
