# copyflow/connectors/page_scraper.py
from typing import Callable, Dict, List, Optional
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup

from copyflow.errors import ExternalFetchError
from copyflow.monitoring import get_logger
from copyflow.schemas import CompetitorSnapshot

log = get_logger("scraper")

USER_AGENT = ("Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
              "(KHTML, like Gecko) Chrome/124.0 Safari/537.36")
MAX_FEATURES = 10

# site key -> selectors; first selector with text wins
SITE_SELECTORS: Dict[str, Dict[str, List[str]]] = {
    "amazon.": {
        "title": ["#productTitle", "h1.a-size-large"],
        "price": [".a-price-whole", ".a-offscreen"],
        "features": ["#feature-bullets ul li span"],
        "rating": [".a-icon-alt"],
    },
    "ebay.": {
        "title": ["h1#x-title-label-lbl", ".x-item-title-label", "h1.x-item-title__mainTitle"],
        "price": [".x-price-primary", ".notranslate"],
        "description": ["#desc_div", ".u-flL.condText"],
        "features": [".ux-labels-values__values"],
    },
    "aliexpress.": {
        "title": ["h1"],
        "price": [".product-price-current", ".uniform-banner-box-price"],
        "description": [".product-overview", ".product-description"],
        "features": [".product-prop-list li"],
    },
    "rozetka.": {
        "title": ["h1.product__title"],
        "price": [".product-prices__big", ".product-price__big"],
        "description": [".product-about__description-content"],
        "features": [".characteristics-full__item"],
        "rating": [".product-ratings__average"],
    },
    "prom.ua": {
        "title": ['h1[data-qaid="product_name"]'],
        "price": ['[data-qaid="product_price"]'],
        "description": ['[data-qaid="product_description"]'],
        "features": [".characteristics__item"],
    },
}

SUPPORTED_SITES_MESSAGE = "URL not supported. Please use Amazon, eBay, AliExpress, Rozetka, or Prom.ua"


# second-level labels used under country codes (amazon.co.uk, rozetka.com.ua)
_COUNTRY_SLDS = {"co", "com", "net", "org"}


def _is_public_suffix(labels: List[str]) -> bool:
    if len(labels) == 1:
        return labels[0].isalpha() and len(labels[0]) >= 2
    if len(labels) == 2:
        sld, cc = labels
        return sld in _COUNTRY_SLDS and cc.isalpha() and len(cc) == 2
    return False


def _host_matches(host: str, marker: str) -> bool:
    """
    "brand." markers match brand.<tld> or brand.co.<cc> and their subdomains;
    other markers match the exact domain and its subdomains.
    """
    if not marker.endswith("."):
        return host == marker or host.endswith("." + marker)
    labels = host.split(".")
    brand = marker[:-1]
    for i, label in enumerate(labels):
        if label == brand and _is_public_suffix(labels[i + 1:]):
            return True
    return False


def site_for_url(url: str) -> Optional[str]:
    """Return the allow-list key for url, or None if the URL is not a supported http(s) page."""
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return None
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return None
    host = parsed.hostname.lower()
    for marker in SITE_SELECTORS:
        if _host_matches(host, marker):
            return marker
    return None


def _first_text(soup: BeautifulSoup, selectors: List[str]) -> str:
    for sel in selectors:
        el = soup.select_one(sel)
        if el is not None:
            text = el.get_text(" ", strip=True)
            if text:
                return text
    return ""


def _all_text(soup: BeautifulSoup, selectors: List[str]) -> List[str]:
    for sel in selectors:
        items = [el.get_text(" ", strip=True) for el in soup.select(sel)]
        items = [i for i in items if i]
        if items:
            return items
    return []


def parse_product_page(html: str, site: str) -> CompetitorSnapshot:
    soup = BeautifulSoup(html, "html.parser")
    sel = SITE_SELECTORS[site]
    features = _all_text(soup, sel.get("features", []))[:MAX_FEATURES]
    description = _first_text(soup, sel.get("description", []))
    if not description and features:
        # amazon keeps its description in the feature bullets
        description = " ".join(features)
    return CompetitorSnapshot(
        title=_first_text(soup, sel.get("title", [])) or "Product title not found",
        price=_first_text(soup, sel.get("price", [])),
        description=description or "Product description not found",
        features=features,
        rating=_first_text(soup, sel.get("rating", [])),
    )


class PageScraper:
    """Fetches a supported product page and extracts the competitor snapshot."""

    def __init__(self, timeout: float = 30.0, get: Optional[Callable[..., requests.Response]] = None):
        self.timeout = timeout
        self._get = get or requests.get

    def fetch(self, url: str) -> CompetitorSnapshot:
        site = site_for_url(url)
        if site is None:
            raise ExternalFetchError(SUPPORTED_SITES_MESSAGE)
        try:
            resp = self._get(url, headers={"User-Agent": USER_AGENT}, timeout=self.timeout)
            resp.raise_for_status()
        except requests.Timeout as e:
            raise ExternalFetchError("Timed out fetching the URL.") from e
        except requests.RequestException as e:
            log.info("Competitor page fetch failed", extra={"url": url, "error": str(e)})
            raise ExternalFetchError("Failed to scrape URL. Please check if the URL is accessible.") from e
        return parse_product_page(resp.text, site)
