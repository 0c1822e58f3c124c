import re
from dataclasses import asdict, dataclass, field
from typing import Any

from bs4 import BeautifulSoup

from app.config import settings

_PRICE_RE = re.compile(r"\d+")


@dataclass
class ParsedAggregatorPage:
    text: str = ""
    images: list[str] = field(default_factory=list)
    labels: list[str] = field(default_factory=list)
    provider_name: str | None = None
    provider_link: str | None = None
    provider_location: str | None = None
    price: int | None = None
    sizes: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def to_original_image_url(src: str) -> str:
    """URL превью -> URL оригинала: последний сегмент пути заменяется на orig.<ext>."""
    url = str(src or "").strip()
    if not url:
        return ""
    if url.startswith("//"):
        url = "https:" + url
    elif not url.startswith(("http://", "https://")):
        url = "https://" + url.lstrip("/")
    path, _, query = url.partition("?")
    head, _, last = path.rpartition("/")
    ext = last.rsplit(".", 1)[-1].lower() if "." in last else "webp"
    if not ext.isalnum():
        ext = "webp"
    return f"{head}/orig.{ext}"


def absolutize(href: str, base_url: str | None = None) -> str:
    value = str(href or "").strip()
    if not value or value.startswith(("http://", "https://")):
        return value
    base = (base_url or settings.aggregator_base_url).rstrip("/")
    return f"{base}/{value.lstrip('/')}"


def _text_of(node) -> str:
    return node.get_text(" ", strip=True) if node is not None else ""


def _collect_images(soup: BeautifulSoup) -> list[str]:
    selectors = (
        "div.gallery-images div.item-image img",
        ".wrap-line-images img",
        ".wrap-thumb-images img",
    )
    for selector in selectors:
        out: list[str] = []
        for img in soup.select(selector):
            src = img.get("src") or img.get("data-src") or ""
            url = to_original_image_url(src)
            if url and url not in out:
                out.append(url)
        if out:
            return out
    return []


def parse_aggregator_html(html: str, base_url: str | None = None) -> ParsedAggregatorPage:
    soup = BeautifulSoup(html or "", "html.parser")
    page = ParsedAggregatorPage()

    for block in soup.select("div.wrap-text > div"):
        if "link-show" in (block.get("class") or []):
            continue
        text = _text_of(block)
        if text:
            page.text = text
            break

    page.images = _collect_images(soup)

    for option in soup.select("div.list-options div.item-option"):
        label = _text_of(option)
        if label and label not in page.labels:
            page.labels.append(label)

    link = soup.select_one("div.post-capt a")
    if link is not None:
        page.provider_link = absolutize(link.get("href") or "", base_url) or None
        page.provider_location = _text_of(link) or None
    author = soup.select_one("span.post-author")
    if author is not None:
        page.provider_name = _text_of(author) or None

    price_match = _PRICE_RE.search(_text_of(soup.select_one("div.post-price")).replace(" ", ""))
    if price_match:
        page.price = int(price_match.group(0))

    for size in soup.select("div.list-sizes div.item-size"):
        value = _text_of(size)
        if value:
            page.sizes.append(value)

    return page
