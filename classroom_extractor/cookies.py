import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .errors import AuthenticationError

logger = logging.getLogger(__name__)

DEFAULT_DOMAIN = ".skool.com"
KEY_COOKIES = ("session", "sSession", "__Secure-next-auth.session-token")

SAME_SITE = {
    "strict": "Strict",
    "lax": "Lax",
    "none": "None",
    "no_restriction": "None",
}


def normalize_cookies(raw: List[dict], default_domain: str = DEFAULT_DOMAIN) -> List[Dict]:
    """Turn a browser-extension cookie export into cookies Playwright accepts."""
    cookies = []
    for c in raw:
        if not isinstance(c, dict):
            continue
        name = c.get("name") or c.get("Name")
        value = c.get("value") or c.get("Value")
        if not name or not value:
            continue
        same_site = str(c.get("sameSite") or c.get("SameSite") or "Lax")
        cookie = {
            "name": name,
            "value": value,
            "domain": c.get("domain") or c.get("Domain") or default_domain,
            "path": c.get("path") or c.get("Path") or "/",
            "secure": c["secure"] if "secure" in c else True,
            "httpOnly": c["httpOnly"] if "httpOnly" in c else False,
            "sameSite": SAME_SITE.get(same_site.lower(), "Lax"),
        }
        expires = c.get("expires", c.get("expirationDate"))
        if isinstance(expires, (int, float)) and expires > 0:
            cookie["expires"] = expires
        cookies.append(cookie)
    return cookies


def parse_netscape_cookies(text: str) -> List[Dict]:
    """Parse a Netscape ``cookies.txt`` export (tab separated, seven columns)."""
    cookies = []
    for line in text.splitlines():
        http_only = line.startswith("#HttpOnly_")
        if http_only:
            line = line[len("#HttpOnly_"):]
        if not line.strip() or line.startswith("#"):
            continue
        parts = line.rstrip("\r\n").split("\t")
        if len(parts) < 7:
            continue
        try:
            expires = int(parts[4])
        except ValueError:
            expires = -1
        cookies.append({
            "domain": parts[0],
            "path": parts[2],
            "secure": parts[3].upper() == "TRUE",
            "expires": expires,
            "name": parts[5],
            "value": parts[6],
            "httpOnly": http_only,
        })
    return cookies


def read_cookie_file(path: Path) -> list:
    if not path.exists():
        raise AuthenticationError(f"{path} not found. Export your session cookies first.")
    text = path.read_text(encoding="utf-8")
    if path.suffix == ".txt":
        return parse_netscape_cookies(text)
    try:
        raw = json.loads(text)
    except ValueError as e:
        raise AuthenticationError(f"{path} is not valid JSON: {e}")
    if not isinstance(raw, list):
        raise AuthenticationError(f"{path} must contain a JSON list of cookies")
    return raw


def load_cookies(path: Path) -> List[Dict]:
    cookies = normalize_cookies(read_cookie_file(path))
    logger.info(f"Loaded {len(cookies)} cookies")
    return cookies


@dataclass
class CookieCheck:
    total: int = 0
    site: int = 0
    expired: int = 0
    session: int = 0
    key_cookies: List[str] = field(default_factory=list)

    @property
    def valid(self) -> int:
        return self.site - self.expired

    @property
    def usable(self) -> bool:
        return self.valid > 0


def check_cookies(raw: list, domain: str = "skool.com", now: Optional[float] = None) -> CookieCheck:
    """Count the exported cookies that belong to ``domain`` and how many have expired."""
    now = time.time() if now is None else now
    check = CookieCheck(total=len(raw))
    for c in raw:
        if not isinstance(c, dict) or domain not in str(c.get("domain") or c.get("Domain") or ""):
            continue
        check.site += 1
        expires = c.get("expires", c.get("expirationDate"))
        if not isinstance(expires, (int, float)) or expires <= 0:
            check.session += 1
        elif expires < now:
            check.expired += 1
        name = c.get("name") or c.get("Name")
        if name in KEY_COOKIES and name not in check.key_cookies:
            check.key_cookies.append(name)
    return check
