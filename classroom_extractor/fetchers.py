"""Fetch strategies used by the download phases.

Videos go through external programs: ffmpeg remuxes Mux HLS streams, yt-dlp handles
every other platform. Resources and images are plain HTTP transfers through httpx.
"""

import asyncio
import logging
import re
from pathlib import Path
from typing import List, Optional, Set
from urllib.parse import unquote, urlparse

import httpx

from .errors import ExternalToolError, TransferError
from .settings import Settings

logger = logging.getLogger(__name__)

BEST_FORMAT = "bestvideo[ext=mp4]+bestaudio[ext=m4a]/best[ext=mp4]/best"
# Loom only serves HLS renditions and has no generic "best" selection
LOOM_FORMAT = "hls-raw-1500+hls-raw-audio-audio/hls-cdn-100+hls-cdn-audio-audio/best"
STDERR_TAIL = 500

_UNSAFE_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_CD_EXTENDED = re.compile(r"filename\*=(?:UTF-8''|utf-8'')([^;\s]+)", re.I)
_CD_QUOTED = re.compile(r'filename="(.+?)"', re.I)
_CD_PLAIN = re.compile(r"filename=([^\s;]+)", re.I)


def filename_from_url(url: str) -> Optional[str]:
    try:
        path = urlparse(url).path
    except ValueError:
        return None
    name = _UNSAFE_CHARS.sub("", unquote(path.rsplit("/", 1)[-1]))
    return name or None


def filename_from_headers(headers) -> Optional[str]:
    """File name announced by a Content-Disposition header, extended form first."""
    disposition = headers.get("content-disposition")
    if not disposition:
        return None
    m = _CD_EXTENDED.search(disposition)
    if m:
        return _UNSAFE_CHARS.sub("", unquote(m.group(1))) or None
    m = _CD_QUOTED.search(disposition) or _CD_PLAIN.search(disposition)
    if m:
        return _UNSAFE_CHARS.sub("", m.group(1)) or None
    return None


def yt_dlp_args(url: str, output_path: Path, platform: str,
                cookies_from_browser: Optional[str] = None) -> List[str]:
    args = []
    if platform == "loom":
        args += ["-f", LOOM_FORMAT]
    elif platform != "mux":
        # HLS streams from Mux have no separate mp4/m4a renditions to pick from
        args += ["-f", BEST_FORMAT]
    args += [
        "--merge-output-format", "mp4",
        "-o", str(output_path),
        "--no-warnings",
        "--progress",
    ]
    if platform == "mux":
        args.append("--no-check-certificates")
    if cookies_from_browser and platform != "loom":
        args += ["--cookies-from-browser", cookies_from_browser]
    args.append(url)
    return args


def ffmpeg_args(url: str, output_path: Path, referer: str) -> List[str]:
    return [
        "-headers", f"Referer: {referer}\r\n",
        "-i", url,
        "-c", "copy",
        "-y",
        str(output_path),
    ]


class MediaFetcher:
    """Spawns yt-dlp and ffmpeg and keeps track of the processes still running."""

    def __init__(self, settings: Settings, cookies_from_browser: Optional[str] = None):
        self.settings = settings
        self.cookies_from_browser = cookies_from_browser
        self._processes: Set[asyncio.subprocess.Process] = set()

    async def run_tool(self, tool: str, executable: str, args: List[str]) -> None:
        logger.debug(f"Running {tool}: {executable} {' '.join(args)}")
        process = await asyncio.create_subprocess_exec(
            executable, *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        self._processes.add(process)
        try:
            _, stderr = await process.communicate()
        finally:
            self._processes.discard(process)
        if process.returncode != 0:
            error_output = stderr.decode("utf-8", errors="ignore").strip()
            raise ExternalToolError(tool, process.returncode, error_output[-STDERR_TAIL:])

    async def fetch_video(self, url: str, output_path: Path, platform: str) -> None:
        try:
            if platform == "mux":
                await self.run_tool("ffmpeg", self.settings.FFMPEG_PATH,
                                    ffmpeg_args(url, output_path, self.settings.REFERER))
            else:
                await self.run_tool("yt-dlp", self.settings.YT_DLP_PATH,
                                    yt_dlp_args(url, output_path, platform, self.cookies_from_browser))
        except ExternalToolError:
            # ffmpeg writes straight to the target; a leftover would pass the resume check
            output_path.unlink(missing_ok=True)
            raise

    def terminate_all(self) -> int:
        terminated = 0
        for process in list(self._processes):
            if process.returncode is None:
                try:
                    process.terminate()
                    terminated += 1
                except ProcessLookupError:
                    pass
        return terminated


def build_http_client(settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        follow_redirects=True,
        max_redirects=settings.MAX_REDIRECTS,
        timeout=httpx.Timeout(settings.REQUEST_TIMEOUT),
        headers={"User-Agent": "Mozilla/5.0"},
        transport=transport,
    )


async def download_file(client: httpx.AsyncClient, url: str, destination: Path,
                        into_directory: bool = False) -> Path:
    """GET ``url`` into ``destination`` and return the path written.

    With ``into_directory`` the destination is a folder and the file name comes from the
    response (Content-Disposition, then the final URL, then ``download``).
    """
    scheme = urlparse(url).scheme
    if scheme not in ("http", "https"):
        raise TransferError(f"Invalid URL: {url}")

    try:
        async with client.stream("GET", url) as response:
            if not response.is_success:
                raise TransferError(f"HTTP {response.status_code} for {url}")

            target = destination
            if into_directory:
                name = (filename_from_headers(response.headers)
                        or filename_from_url(str(response.url))
                        or "download")
                target = destination / name
            target.parent.mkdir(parents=True, exist_ok=True)

            completed = False
            try:
                with open(target, "wb") as f:
                    async for chunk in response.aiter_bytes():
                        f.write(chunk)
                completed = True
            finally:
                if not completed:
                    target.unlink(missing_ok=True)
    except httpx.TooManyRedirects:
        raise TransferError(f"Too many redirects for {url}")
    except httpx.TimeoutException:
        raise TransferError(f"Request timed out: {url}")
    except httpx.HTTPError as e:
        raise TransferError(f"Request failed for {url}: {e}")

    return target
