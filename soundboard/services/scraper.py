"""
MyInstants scraper - sound page lookup and audio download
"""
import logging
import re
from dataclasses import dataclass
from html.parser import HTMLParser
from urllib.parse import urljoin

import aiohttp

from soundboard.errors import DownloadError, ScrapeError

logger = logging.getLogger(__name__)

BASE_URL = "https://www.myinstants.com"
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)

_ONCLICK_PATTERN = re.compile(r"play\('([^']+)'")
_TITLE_SUFFIXES = [
    re.compile(r"\s*-\s*Instant Sound Button\s*\|\s*Myinstants\s*$", re.IGNORECASE),
    re.compile(r"\s*-\s*Botón de sonido\s*", re.IGNORECASE),
    re.compile(r"\s*-\s*Instant Sound Button\s*", re.IGNORECASE),
    re.compile(r"\s*\|\s*Myinstants\s*", re.IGNORECASE),
]
# Hosts sometimes label mp3 files generically
_AUDIO_CONTENT_TYPES = ("audio/", "application/octet-stream", "binary/octet-stream")


@dataclass
class ScrapedSound:
    """Sound found on a MyInstants page."""
    source_url: str
    title: str


def clean_title(title: str) -> str:
    """Strip the site suffixes MyInstants appends to sound titles."""
    for pattern in _TITLE_SUFFIXES:
        title = pattern.sub("", title)
    return title.strip()


class _SoundPageParser(HTMLParser):
    """Collects the handful of elements a sound page can carry its audio URL in."""

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.download_href: str | None = None
        self.button_onclick: str | None = None
        self.button_data_url: str | None = None
        self.source_src: str | None = None
        self.og_title: str | None = None
        self.title = ""
        self._seen_button = False
        self._in_title = False

    def handle_starttag(self, tag, attrs):
        attrs = dict(attrs)
        if tag == "a" and "download" in attrs and "/media/sounds/" in (attrs.get("href") or ""):
            self.download_href = self.download_href or attrs["href"]
        elif "small-button" in (attrs.get("class") or "").split() and not self._seen_button:
            # Only the first button on the page belongs to this sound
            self._seen_button = True
            self.button_onclick = attrs.get("onclick")
            self.button_data_url = attrs.get("data-url")
        elif tag == "source" and attrs.get("src") and not self.source_src:
            self.source_src = attrs["src"]
        elif tag == "meta" and attrs.get("property") == "og:title" and not self.og_title:
            self.og_title = attrs.get("content")
        elif tag == "title":
            self._in_title = True

    def handle_endtag(self, tag):
        if tag == "title":
            self._in_title = False

    def handle_data(self, data):
        if self._in_title:
            self.title += data


def parse_sound_page(html: str, base_url: str = BASE_URL) -> ScrapedSound:
    """Extract the audio URL and title from a sound page."""
    parser = _SoundPageParser()
    parser.feed(html)
    parser.close()

    sound_url = parser.download_href
    if not sound_url and parser.button_onclick:
        match = _ONCLICK_PATTERN.search(parser.button_onclick)
        if match:
            sound_url = match.group(1)
    if not sound_url:
        sound_url = parser.button_data_url
    if not sound_url:
        sound_url = parser.source_src

    if not sound_url:
        raise ScrapeError("Could not find sound URL on the page")

    if not sound_url.startswith("http"):
        sound_url = urljoin(base_url, sound_url)

    title = (
        parser.og_title
        or parser.title.replace(" - Instant Sound Button | Myinstants", "").strip()
        or "Unknown Sound"
    )
    return ScrapedSound(source_url=sound_url, title=title)


def is_myinstants_url(url: str) -> bool:
    return "myinstants.com" in url


class ScraperService:
    """Scrapes MyInstants pages and downloads their audio files."""

    def __init__(self, timeout: float = 15.0):
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    async def scrape(self, page_url: str) -> ScrapedSound:
        """Find the audio file behind a MyInstants page."""
        if not is_myinstants_url(page_url):
            raise ScrapeError("URL must be from myinstants.com")

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.get(page_url, headers={"User-Agent": USER_AGENT}) as resp:
                    if resp.status != 200:
                        raise ScrapeError(f"Page returned HTTP {resp.status}")
                    html = await resp.text()
        except ScrapeError:
            raise
        except Exception as e:
            logger.error(f"Error scraping {page_url}: {e}")
            raise ScrapeError(f"Failed to scrape sound: {e}") from e

        sound = parse_sound_page(html)
        logger.info(f"Found sound: {sound.title} - {sound.source_url}")
        return sound

    async def download(self, source_url: str) -> bytes:
        """Download an audio file into memory."""
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.get(source_url, headers={"User-Agent": USER_AGENT}) as resp:
                    if resp.status < 200 or resp.status >= 300:
                        raise DownloadError(f"Download returned HTTP {resp.status}")
                    content_type = resp.headers.get("Content-Type", "")
                    if content_type and not content_type.startswith(_AUDIO_CONTENT_TYPES):
                        raise DownloadError(f"Not an audio file ({content_type})")
                    data = await resp.read()
        except DownloadError as e:
            logger.error(f"Error downloading {source_url}: {e}")
            raise
        except Exception as e:
            logger.error(f"Error downloading {source_url}: {e!r}")
            raise DownloadError(f"Failed to download sound: {e}") from e

        if not data:
            raise DownloadError("Downloaded file is empty")
        return data
