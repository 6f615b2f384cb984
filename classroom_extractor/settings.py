import logging
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)


# Settings loader using pydantic
class Settings(BaseSettings):
    BASE_URL: str = "https://www.skool.com"
    OUTPUT_DIR: str = "output"
    COOKIES_PATH: str = "cookies.json"
    HEADLESS: bool = True
    USER_AGENT: str = DEFAULT_USER_AGENT
    TIMEOUT_PAGE_LOAD: int = 45000
    NAVIGATION_DELAY: float = 2.0
    HYDRATION_DELAY: float = 3.0
    YT_DLP_PATH: str = "yt-dlp"
    FFMPEG_PATH: str = "ffmpeg"
    MAX_CONCURRENT_DOWNLOADS: int = 2
    REQUEST_TIMEOUT: float = 30.0
    MAX_REDIRECTS: int = 5
    REFERER: str = "https://www.skool.com/"
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    def community_dir(self, community: str) -> Path:
        return Path(self.OUTPUT_DIR) / community

    def classroom_data_path(self, community: str) -> Path:
        return self.community_dir(community) / "classroom-data.json"


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
    logging.getLogger().setLevel(getattr(logging, level.upper(), logging.INFO))
