"""Crawl a community classroom with Playwright and build its classroom tree.

The course list, each course's section/lesson outline and each lesson's Mux video live in
the ``__NEXT_DATA__`` JSON the site embeds in every page. The sidebar DOM is the source of
lesson order, titles and URLs, and embedded players, links and images are read from the
rendered lesson page.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, urlparse

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, async_playwright

from .cookies import load_cookies
from .errors import AuthenticationError, ClassroomError
from .models import ClassroomTree, ImageRef, Lesson, LessonContent, Module, ResourceRef, VideoRef
from .prosemirror import body_to_markdown
from .render import save_classroom, summarize
from .resolver import (INTERNAL_DOMAIN, classify_embed, is_content_image, is_resource_link, links_in_text,
                       merge_resources)
from .settings import Settings

logger = logging.getLogger(__name__)

MIN_CONTENT_LENGTH = 20
MIN_MAIN_TEXT_LENGTH = 100

NEXT_DATA_SCRIPT = """() => {
  const el = document.getElementById('__NEXT_DATA__');
  if (!el) return null;
  try { return JSON.parse(el.textContent); } catch (e) { return null; }
}"""

BODY_TEXT_SCRIPT = "() => document.body ? (document.body.textContent || '') : ''"

ANCHORS_SCRIPT = """() => Array.from(document.querySelectorAll('a[href]')).map(a => ({
  href: a.href || '',
  text: (a.textContent || '').trim(),
}))"""

PLAYERS_SCRIPT = """() => ({
  iframes: Array.from(document.querySelectorAll('iframe')).map(f => f.src || ''),
  videos: Array.from(document.querySelectorAll('video')).map(v => v.src || ''),
})"""

CONTENT_AREA_SCRIPT = """() => {
  const area = document.querySelector('.ql-editor, article, main');
  if (!area) return { links: [], images: [] };
  return {
    links: Array.from(area.querySelectorAll('a[href]')).map(a => ({
      href: a.href || '',
      text: (a.textContent || '').trim(),
      isDownload: a.hasAttribute('download'),
    })),
    images: Array.from(area.querySelectorAll('img')).map(img => ({ src: img.src || '', alt: img.alt || '' })),
  };
}"""

CONTENT_TEXT_SCRIPT = """() => {
  const text = el => (el && el.textContent ? el.textContent.trim() : '');
  return {
    richText: text(document.querySelector('.ql-editor')),
    wrappers: Array.from(document.querySelectorAll(
      '[class*="styled__Content"], [class*="ContentWrapper"], [class*="lesson-body"]'
    )).map(text),
    main: text(document.querySelector('main')),
  };
}"""


@dataclass
class LessonMeta:
    title: Optional[str]
    desc: Optional[str]
    section_title: str
    name: Optional[str] = None


def community_slug(url: str) -> str:
    parsed = urlparse(url)
    path = parsed.path if parsed.scheme else url
    slug = path.strip("/").split("/", 1)[0]
    if not slug:
        raise ClassroomError(f"Could not parse community slug: {url}")
    return slug


def page_props(next_data: Any) -> Dict:
    if not isinstance(next_data, dict):
        return {}
    props = (next_data.get("props") or {}).get("pageProps")
    return props if isinstance(props, dict) else {}


def _metadata(obj: Any) -> Dict:
    if not isinstance(obj, dict):
        return {}
    meta = obj.get("metadata")
    return meta if isinstance(meta, dict) else {}


def is_login_wall(body_text: str) -> bool:
    return "Log in" in body_text and "Sign up" in body_text and "Classroom" not in body_text


def is_substantial(markdown: str) -> bool:
    return bool(markdown and markdown.strip()) and len(markdown) >= MIN_CONTENT_LENGTH


def course_title(course_info: Dict, index: int) -> str:
    return _metadata(course_info).get("title") or course_info.get("name") or f"Course {index}"


def lesson_meta_map(course: Any) -> Dict[str, LessonMeta]:
    """Map lesson id to title, body and section from a course's nested outline."""
    meta_map = {}
    if not isinstance(course, dict):
        return meta_map
    for section in course.get("children") or []:
        if not isinstance(section, dict):
            continue
        section_title = _metadata(section.get("course")).get("title") or "Section"
        for item in section.get("children") or []:
            lesson_course = item.get("course") if isinstance(item, dict) else None
            if not isinstance(lesson_course, dict) or not lesson_course.get("id"):
                continue
            meta = _metadata(lesson_course)
            meta_map[str(lesson_course["id"])] = LessonMeta(
                title=meta.get("title"),
                desc=meta.get("desc"),
                section_title=section_title,
                name=lesson_course.get("name"),
            )
    return meta_map


def sidebar_lessons(anchors: List[Dict], slug: str) -> List[Dict]:
    """Ordered, de-duplicated lesson links ``{title, url, lessonId}`` from page anchors."""
    lessons = []
    seen = set()
    for anchor in anchors or []:
        href = anchor.get("href") or ""
        if f"/{slug}/classroom/" not in href or "md=" not in href or href in seen:
            continue
        seen.add(href)
        lesson_id = parse_qs(urlparse(href).query).get("md", [None])[0]
        lessons.append({"title": anchor.get("text") or "", "url": href, "lessonId": lesson_id})
    return lessons


def merge_lessons(sidebar: List[Dict], meta_map: Dict[str, LessonMeta], module_title: str) -> List[Lesson]:
    lessons = []
    for entry in sidebar:
        meta = meta_map.get(entry["lessonId"])
        markdown = body_to_markdown(meta.desc) if meta and meta.desc else ""
        lessons.append(Lesson(
            title=entry["title"] or (meta.title if meta and meta.title else ""),
            url=entry["url"],
            lesson_id=entry["lessonId"],
            module=module_title,
            section_title=meta.section_title if meta else "",
            content=LessonContent(markdown=markdown),
            resources=links_in_text(markdown),
        ))
    return lessons


def mux_video(video: Any) -> Optional[VideoRef]:
    if not isinstance(video, dict) or not video.get("playbackId"):
        return None
    playback_id = video["playbackId"]
    src = f"https://stream.mux.com/{playback_id}.m3u8"
    if video.get("playbackToken"):
        src += f"?token={video['playbackToken']}"
    thumbnail = None
    if video.get("thumbnailToken"):
        thumbnail = f"https://image.mux.com/{playback_id}/thumbnail.jpg?token={video['thumbnailToken']}"
    duration = video.get("duration")  # milliseconds
    return VideoRef(
        src=src,
        type="mux",
        playback_id=str(playback_id),
        duration=duration if isinstance(duration, (int, float)) else None,
        aspect_ratio=video.get("aspectRatio"),
        thumbnail_url=thumbnail,
    )


def dom_videos(players: Any) -> List[VideoRef]:
    videos = []
    seen = set()
    if not isinstance(players, dict):
        return videos
    for src in players.get("iframes") or []:
        platform = classify_embed(src)
        if platform and src not in seen:
            seen.add(src)
            videos.append(VideoRef(src=src, type=platform))
    for src in players.get("videos") or []:
        if src and src not in seen:
            seen.add(src)
            videos.append(VideoRef(src=src, type="native"))
    return videos


def content_extras(area: Any, domain: str = INTERNAL_DOMAIN) -> Tuple[List[ResourceRef], List[ImageRef]]:
    resources = []
    images = []
    if not isinstance(area, dict):
        return resources, images
    seen = set()
    for link in area.get("links") or []:
        href = link.get("href") or ""
        if href in seen or not is_resource_link(href, domain):
            continue
        seen.add(href)
        resources.append(ResourceRef(href=href, text=link.get("text") or href,
                                     is_download=bool(link.get("isDownload"))))
    for image in area.get("images") or []:
        src = image.get("src") or ""
        if src in seen or not is_content_image(src):
            continue
        seen.add(src)
        images.append(ImageRef(src=src, alt=image.get("alt") or ""))
    return resources, images


def dom_text_fallback(texts: Any) -> str:
    if not isinstance(texts, dict):
        return ""
    rich_text = texts.get("richText") or ""
    if len(rich_text) > MIN_CONTENT_LENGTH:
        return rich_text
    for text in texts.get("wrappers") or []:
        if text and len(text) > MIN_CONTENT_LENGTH:
            return text
    main = texts.get("main") or ""
    if len(main) > MIN_MAIN_TEXT_LENGTH:
        return main
    return ""


def _keep_longer(lesson: Lesson, candidate: str) -> None:
    if len(candidate) > len(lesson.content.markdown):
        lesson.content.markdown = candidate


class ClassroomExtractor:
    """Walks one community's classroom on an already authenticated page."""

    def __init__(self, page: Page, settings: Settings, community: str):
        self.page = page
        self.settings = settings
        self.community = community
        self.classroom_url = f"{settings.BASE_URL}/{community}/classroom"

    async def _goto(self, url: str, settle: float) -> None:
        await self.page.goto(url, wait_until="domcontentloaded", timeout=self.settings.TIMEOUT_PAGE_LOAD)
        if settle:
            await asyncio.sleep(settle)

    async def _next_data(self) -> Dict:
        return page_props(await self.page.evaluate(NEXT_DATA_SCRIPT))

    async def authenticate(self) -> None:
        logger.info(f"Navigating to {self.classroom_url}")
        try:
            await self._goto(self.classroom_url, self.settings.NAVIGATION_DELAY)
            body_text = await self.page.evaluate(BODY_TEXT_SCRIPT)
        except PlaywrightError as e:
            raise AuthenticationError(f"Could not open {self.classroom_url}: {e}")
        if is_login_wall(body_text or ""):
            raise AuthenticationError("Not authenticated. Re-export your cookies.")
        logger.info("Authenticated.")

    async def list_courses(self) -> List[Dict]:
        courses = (await self._next_data()).get("allCourses") or []
        courses = [c for c in courses if isinstance(c, dict)]
        logger.info(f"Found {len(courses)} courses")
        return courses

    async def extract_course(self, index: int, total: int, course_info: Dict) -> Module:
        title = course_title(course_info, index)
        slug = course_info.get("name")
        logger.info(f"[{index}/{total}] {title}")
        course_id = course_info.get("id")
        module = Module(title=title, course_id=None if course_id is None else str(course_id), course_slug=slug)

        try:
            await self._goto(f"{self.classroom_url}/{slug}", self.settings.NAVIGATION_DELAY)
            sidebar = sidebar_lessons(await self.page.evaluate(ANCHORS_SCRIPT), self.community)
            logger.info(f"  Sidebar: {len(sidebar)} lessons")
            meta_map = lesson_meta_map((await self._next_data()).get("course"))
            module.lessons = merge_lessons(sidebar, meta_map, title)
        except Exception as e:
            logger.error(f"Failed to load course {title}: {e}")
            module.error = str(e)
            return module

        logger.info(f"  Extracted content for {len(module.lessons)} lessons from course data")

        for li, lesson in enumerate(module.lessons, 1):
            logger.info(f"  [{li}/{len(module.lessons)}] {lesson.title}")
            try:
                await self.visit_lesson(lesson)
            except Exception as e:
                logger.warning(f"    Failed to extract lesson {lesson.title}: {e}")
                lesson.error = str(e)
        return module

    async def visit_lesson(self, lesson: Lesson) -> None:
        await self._goto(lesson.url, self.settings.HYDRATION_DELAY)
        props = await self._next_data()

        mux = mux_video(props.get("video"))
        if mux:
            lesson.videos.append(mux)
        known = {video.link for video in lesson.videos}
        for video in dom_videos(await self.page.evaluate(PLAYERS_SCRIPT)):
            if video.link not in known:
                known.add(video.link)
                lesson.videos.append(video)

        resources, images = content_extras(await self.page.evaluate(CONTENT_AREA_SCRIPT))
        lesson.resources = merge_resources(lesson.resources, resources)
        lesson.images = images

        if not is_substantial(lesson.content.markdown):
            meta = lesson_meta_map(props.get("course")).get(lesson.lesson_id)
            if meta and meta.desc:
                _keep_longer(lesson, body_to_markdown(meta.desc))

        if not is_substantial(lesson.content.markdown):
            _keep_longer(lesson, dom_text_fallback(await self.page.evaluate(CONTENT_TEXT_SCRIPT)))

        duration = ""
        if lesson.videos and lesson.videos[0].duration:
            duration = f" ({round(lesson.videos[0].duration / 1000)}s)"
        logger.info(f"    -> Content: {len(lesson.content.markdown)} chars, Videos: {len(lesson.videos)}{duration}, "
                    f"Resources: {len(lesson.resources)}")

    async def extract(self) -> ClassroomTree:
        await self.authenticate()
        tree = ClassroomTree(community=self.community, classroom_url=self.classroom_url)
        courses = await self.list_courses()
        for index, course_info in enumerate(courses, 1):
            tree.modules.append(await self.extract_course(index, len(courses), course_info))
        return tree


async def scrape_community(settings: Settings, community_url: str, headless: Optional[bool] = None) -> ClassroomTree:
    """Scrape one community and persist its tree and lesson files."""
    community = community_slug(community_url)
    logger.info(f"Community: {community}")
    cookies = load_cookies(Path(settings.COOKIES_PATH))

    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=settings.HEADLESS if headless is None else headless)
        try:
            context = await browser.new_context(
                user_agent=settings.USER_AGENT,
                viewport={"width": 1440, "height": 900},
            )
            await context.add_cookies(cookies)
            page = await context.new_page()
            tree = await ClassroomExtractor(page, settings, community).extract()
        finally:
            try:
                await browser.close()
            except Exception as e:
                logger.warning(f"Error while closing browser: {e}")

    community_dir = settings.community_dir(community)
    save_classroom(tree, community_dir)

    stats = summarize(tree)
    logger.info("--- SCRAPE SUMMARY ---")
    logger.info(f"Community:  {community}")
    logger.info(f"Courses:    {stats['courses']}")
    logger.info(f"Lessons:    {stats['lessons']}")
    logger.info(f"Videos:     {stats['videos']} ({stats['minutes']} min total)")
    logger.info(f"Output:     {community_dir}")
    return tree


def is_logged_in_url(url: str) -> bool:
    return "/login" not in url and "/signup" not in url


async def verify_session(settings: Settings) -> bool:
    """Open the account settings page with the saved cookies and check we are not bounced to login."""
    cookies = load_cookies(Path(settings.COOKIES_PATH))
    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=True)
        try:
            context = await browser.new_context(user_agent=settings.USER_AGENT)
            await context.add_cookies(cookies)
            page = await context.new_page()
            await page.goto(f"{settings.BASE_URL}/settings", wait_until="domcontentloaded",
                            timeout=settings.TIMEOUT_PAGE_LOAD)
            return is_logged_in_url(page.url)
        finally:
            await browser.close()
