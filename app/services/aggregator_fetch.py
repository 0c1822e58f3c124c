import logging
from dataclasses import dataclass
from urllib.parse import quote

import httpx
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from app.config import settings

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
IMAGE_USER_AGENT = "Mozilla/5.0 (compatible; MarinaObuvBot/1.0)"


class FetchError(RuntimeError):
    pass


@dataclass
class FetchedPage:
    url: str
    html: str
    screenshot: bytes | None = None


def aggregator_search_url(data_id: str) -> str:
    return f"{settings.aggregator_base_url.rstrip('/')}/baza/search?q={quote(str(data_id).strip())}"


def fetch_aggregator_page(data_id: str) -> FetchedPage:
    url = aggregator_search_url(data_id)
    timeout_ms = settings.aggregator_playwright_timeout_ms
    logger.info("Fetching aggregator page %s", url)
    try:
        with sync_playwright() as pw:
            browser = pw.chromium.launch(headless=not settings.aggregator_playwright_debug)
            try:
                context = browser.new_context(user_agent=USER_AGENT, viewport={"width": 1366, "height": 900}, locale="ru-RU")
                page = context.new_page()
                page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
                try:
                    page.wait_for_selector("div.wrap-text, div.gallery-images", timeout=10000)
                except PlaywrightTimeoutError:
                    logger.warning("Aggregator content selector not found on %s", url)
                show_more = page.query_selector("div.wrap-text div.link-show a")
                if show_more is not None:
                    try:
                        show_more.click(timeout=3000)
                        page.wait_for_timeout(500)
                    except PlaywrightError:
                        logger.warning("Could not expand description on %s", url)
                html = page.content()
                screenshot = page.screenshot(full_page=True, type="png")
            finally:
                browser.close()
    except PlaywrightError as exc:
        raise FetchError(f"Не удалось загрузить страницу агрегатора: {exc}") from exc
    return FetchedPage(url=url, html=html, screenshot=screenshot)


def download_image(url: str) -> tuple[bytes, str]:
    """Скачивает картинку, возвращает (bytes, content-type)."""
    headers = {"User-Agent": IMAGE_USER_AGENT, "Accept": "image/*,*/*;q=0.8"}
    try:
        with httpx.Client(timeout=settings.aggregator_image_timeout_sec, follow_redirects=True) as client:
            response = client.get(url, headers=headers)
    except httpx.HTTPError as exc:
        raise FetchError(f"Не удалось скачать изображение {url}: {exc}") from exc
    if response.status_code >= 400:
        raise FetchError(f"Не удалось скачать изображение {url}: HTTP {response.status_code}")
    content_type = response.headers.get("content-type", "image/jpeg").split(";", 1)[0].strip()
    return response.content, content_type
