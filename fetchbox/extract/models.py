"""
Options and results of HTML content extraction.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class ExtractOptions:
    include_metadata: bool = True
    include_links: bool = True
    include_images: bool = True
    include_html: bool = False
    convert_to_markdown: bool = True
    # Extra CSS selectors to drop before extraction
    remove_selectors: List[str] = field(default_factory=list)
    # CSS selector for the main content, tried before the built-in ones
    main_content_selector: Optional[str] = None


@dataclass
class LinkInfo:
    text: str
    href: str
    title: Optional[str] = None


@dataclass
class ImageInfo:
    src: str
    alt: Optional[str] = None
    title: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None


@dataclass
class ContentMetadata:
    keywords: List[str] = field(default_factory=list)
    og_title: Optional[str] = None
    og_description: Optional[str] = None
    og_image: Optional[str] = None
    og_url: Optional[str] = None
    twitter_card: Optional[str] = None
    canonical: Optional[str] = None
    lang: Optional[str] = None


@dataclass
class ContentStats:
    word_count: int
    character_count: int
    reading_time_minutes: int


@dataclass
class ExtractedContent:
    title: str
    content: str
    stats: ContentStats
    metadata: ContentMetadata = field(default_factory=ContentMetadata)
    description: Optional[str] = None
    author: Optional[str] = None
    published_date: Optional[str] = None
    markdown: Optional[str] = None
    html: Optional[str] = None
    links: Optional[List[LinkInfo]] = None
    images: Optional[List[ImageInfo]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        return {key: value for key, value in data.items() if value is not None}
