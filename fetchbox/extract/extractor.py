"""
HTML content extraction.

Turns a fetched or rendered page into readable text and Markdown:
- Metadata (keywords, Open Graph, Twitter card, canonical URL, language)
- Title, description, author and published date with fallbacks
- Boilerplate removal (scripts, navigation, ads, social widgets, comments)
- Main content detection, falling back to <body>
- Link and image lists, statistics and reading time

Parsing is done with BeautifulSoup on the lxml parser, Markdown
conversion with markdownify.
"""

from __future__ import annotations

import logging
import math
import re
from typing import List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag
from markdownify import ATX, markdownify

from fetchbox.exceptions import ExtractError, ExtractErrorCode
from fetchbox.extract.models import (
    ContentMetadata,
    ContentStats,
    ExtractedContent,
    ExtractOptions,
    ImageInfo,
    LinkInfo,
)

logger = logging.getLogger(__name__)

WORDS_PER_MINUTE = 200

REMOVAL_SELECTORS = [
    "script",
    "style",
    "noscript",
    "iframe",
    "object",
    "embed",
    'link[rel="stylesheet"]',
    # Advertisements
    '[id="ad"]',
    '[id^="ad-"]',
    '[id$="-ad"]',
    '[class*="ad-"]',
    '[class*="advertisement"]',
    '[class*="banner"]',
    '[class*="sponsor"]',
    '[class*="popup"]',
    '[class*="modal"]',
    # Navigation and chrome
    "nav",
    "header",
    "footer",
    '[role="navigation"]',
    '[role="banner"]',
    '[role="contentinfo"]',
    '[class*="sidebar"]',
    '[class*="menu"]',
    '[class*="breadcrumb"]',
    # Social
    '[class*="share"]',
    '[class*="social"]',
    '[class*="follow"]',
    # Comments
    '[class*="comment"]',
    '[id*="comment"]',
    # Related content
    '[class*="related"]',
    '[class*="recommended"]',
]

HIDDEN_SELECTORS = [
    '[style*="display:none"]',
    '[style*="display: none"]',
    "[hidden]",
    '[aria-hidden="true"]',
]

MAIN_CONTENT_SELECTORS = [
    "article",
    "main",
    '[role="main"]',
    ".main-content",
    "#main-content",
    ".content",
    "#content",
    ".post-content",
    ".entry-content",
    ".article-content",
    ".page-content",
]

_LANGUAGE_CLASS = re.compile(r"(?:language|lang)-([\w+#-]+)")
_WHITESPACE = re.compile(r"\s+")
_BLANK_LINES = re.compile(r"\n{3,}")


def _meta(soup: BeautifulSoup, **attrs: str) -> Optional[str]:
    tag = soup.find("meta", attrs=attrs)
    if tag is None:
        return None
    content = tag.get("content")
    return content.strip() if isinstance(content, str) else None


def _first_text(soup: BeautifulSoup, selector: str) -> Optional[str]:
    tag = soup.select_one(selector)
    if tag is None:
        return None
    text = tag.get_text(" ", strip=True)
    return text or None


def _remove(soup: BeautifulSoup, selectors: List[str]) -> None:
    for selector in selectors:
        for element in soup.select(selector):
            if not element.decomposed:
                element.decompose()


def _code_language(element: Tag) -> str:
    code = element.find("code")
    classes = (code.get("class") if code is not None else None) or element.get("class") or []
    for cls in classes:
        match = _LANGUAGE_CLASS.match(cls)
        if match:
            return match.group(1)
    return ""


def _parse_int(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    match = re.match(r"\s*(\d+)", value)
    return int(match.group(1)) if match else None


class ContentExtractor:
    """Extracts readable content, Markdown and metadata from HTML."""

    def _parse(self, html: str) -> BeautifulSoup:
        if not html or not html.strip():
            raise ExtractError("HTML content is empty", code=ExtractErrorCode.INVALID_HTML)
        try:
            return BeautifulSoup(html, "lxml")
        except Exception as exc:
            raise ExtractError(
                f"Failed to parse HTML: {exc}", code=ExtractErrorCode.PARSING_FAILED
            ) from exc

    def extract(
        self,
        html: str,
        url: Optional[str] = None,
        options: Optional[ExtractOptions] = None,
    ) -> ExtractedContent:
        """
        Extract the readable content of a page.

        Args:
            html: Page HTML.
            url: Page URL, used to resolve relative image sources.
            options: What to include; defaults include everything but raw HTML.

        Raises:
            ExtractError: Empty input, unparsable HTML or failed conversion.
        """
        options = options or ExtractOptions()
        soup = self._parse(html)
        logger.info("Extracting content%s", f" from {url}" if url else "")

        metadata = self.extract_metadata(soup) if options.include_metadata else ContentMetadata()
        # Read before cleanup removes <header> and friends
        title = self._title(soup)
        description = (
            metadata.og_description
            or _meta(soup, property="og:description")
            or _meta(soup, name="description")
            or _meta(soup, name="twitter:description")
        )
        author = (
            _meta(soup, name="author")
            or _meta(soup, property="article:author")
            or _first_text(soup, '[rel="author"]')
            or _first_text(soup, ".author")
        )
        published = (
            _meta(soup, property="article:published_time")
            or _meta(soup, name="publish-date")
            or self._time_datetime(soup)
            or _first_text(soup, ".publish-date")
        )

        self._clean(soup, options)
        main = self._main_content(soup, options)
        content_html = main.decode_contents() if main is not None else ""
        text = self._text(main)

        markdown = self.html_to_markdown(content_html) if options.convert_to_markdown else None
        stats = self.stats(text)

        result = ExtractedContent(
            title=title,
            content=text,
            stats=stats,
            metadata=metadata,
            description=description,
            author=author,
            published_date=published,
            markdown=markdown,
            html=content_html if options.include_html else None,
            links=self._links(main) if options.include_links else None,
            images=self._images(main, url) if options.include_images else None,
        )
        logger.info(
            "Extracted %d words, %d link(s), %d image(s)",
            stats.word_count,
            len(result.links or []),
            len(result.images or []),
        )
        return result

    def extract_plain_text(self, html: str) -> str:
        """Body text with boilerplate removed and whitespace collapsed."""
        soup = self._parse(html)
        _remove(soup, REMOVAL_SELECTORS)
        root = soup.body or soup
        return _WHITESPACE.sub(" ", root.get_text(" ")).strip()

    def extract_metadata_only(self, html: str) -> ContentMetadata:
        return self.extract_metadata(self._parse(html))

    def extract_metadata(self, soup: BeautifulSoup) -> ContentMetadata:
        metadata = ContentMetadata()

        keywords = _meta(soup, name="keywords")
        if keywords:
            metadata.keywords = [k.strip() for k in keywords.split(",") if k.strip()]

        metadata.og_title = _meta(soup, property="og:title")
        metadata.og_description = _meta(soup, property="og:description")
        metadata.og_image = _meta(soup, property="og:image")
        metadata.og_url = _meta(soup, property="og:url")
        metadata.twitter_card = _meta(soup, name="twitter:card")

        canonical = soup.find("link", rel="canonical")
        if canonical is not None and canonical.get("href"):
            metadata.canonical = canonical["href"]

        html_tag = soup.find("html")
        lang = html_tag.get("lang") if html_tag is not None else None
        metadata.lang = lang or _meta(soup, **{"http-equiv": "content-language"})
        return metadata

    def _title(self, soup: BeautifulSoup) -> str:
        candidates = [
            _meta(soup, property="og:title"),
            _meta(soup, name="twitter:title"),
            _first_text(soup, "h1"),
            soup.title.get_text(strip=True) if soup.title else None,
        ]
        for candidate in candidates:
            if candidate:
                return candidate
        return "Untitled"

    def _time_datetime(self, soup: BeautifulSoup) -> Optional[str]:
        tag = soup.select_one("time[datetime]")
        return tag["datetime"] if tag is not None else None

    def _clean(self, soup: BeautifulSoup, options: ExtractOptions) -> None:
        _remove(soup, REMOVAL_SELECTORS)
        if options.remove_selectors:
            _remove(soup, options.remove_selectors)
        _remove(soup, HIDDEN_SELECTORS)
        for element in soup.select("p, div, span"):
            if not element.decomposed and not element.contents:
                element.decompose()

    def _main_content(self, soup: BeautifulSoup, options: ExtractOptions) -> Optional[Tag]:
        selectors = list(MAIN_CONTENT_SELECTORS)
        if options.main_content_selector:
            selectors.insert(0, options.main_content_selector)
        for selector in selectors:
            element = soup.select_one(selector)
            if element is not None:
                logger.debug("Main content found with %r", selector)
                return element
        logger.debug("No main content container, using <body>")
        return soup.body or soup

    def _text(self, main: Optional[Tag]) -> str:
        if main is None:
            return ""
        lines = (line.strip() for line in main.get_text("\n").splitlines())
        return "\n".join(line for line in lines if line)

    def _links(self, main: Optional[Tag]) -> List[LinkInfo]:
        links: List[LinkInfo] = []
        if main is None:
            return links
        seen = set()
        for anchor in main.select("a[href]"):
            href = anchor["href"].strip()
            if not href or href in seen:
                continue
            if href.startswith("#") or href.lower().startswith("javascript:"):
                continue
            seen.add(href)
            links.append(
                LinkInfo(
                    text=anchor.get_text(" ", strip=True),
                    href=href,
                    title=anchor.get("title") or None,
                )
            )
        return links

    def _images(self, main: Optional[Tag], base_url: Optional[str]) -> List[ImageInfo]:
        images: List[ImageInfo] = []
        if main is None:
            return images
        seen = set()
        for img in main.select("img[src]"):
            src = img["src"].strip()
            if not src or src in seen:
                continue
            if src.startswith("data:") or "placeholder" in src or "spacer.gif" in src:
                continue
            seen.add(src)
            if base_url and not src.startswith(("http://", "https://")):
                src = urljoin(base_url, src)
            images.append(
                ImageInfo(
                    src=src,
                    alt=img.get("alt") or None,
                    title=img.get("title") or None,
                    width=_parse_int(img.get("width")),
                    height=_parse_int(img.get("height")),
                )
            )
        return images

    def html_to_markdown(self, html: str) -> str:
        """Convert an HTML fragment to Markdown with ATX headings and fenced code."""
        if not html or not html.strip():
            return ""
        try:
            markdown = markdownify(
                html,
                heading_style=ATX,
                bullets="-",
                code_language_callback=_code_language,
                strip=["script", "style"],
            )
        except Exception as exc:
            raise ExtractError(
                f"Failed to convert HTML to Markdown: {exc}",
                code=ExtractErrorCode.CONVERSION_FAILED,
            ) from exc
        return _BLANK_LINES.sub("\n\n", markdown).strip()

    @staticmethod
    def stats(text: str) -> ContentStats:
        clean = text.strip()
        words = len(clean.split())
        return ContentStats(
            word_count=words,
            character_count=len(clean),
            reading_time_minutes=math.ceil(words / WORDS_PER_MINUTE),
        )
