"""HTML content extraction."""

from fetchbox.extract.extractor import ContentExtractor
from fetchbox.extract.models import (
    ContentMetadata,
    ContentStats,
    ExtractedContent,
    ExtractOptions,
    ImageInfo,
    LinkInfo,
)

__all__ = [
    "ContentExtractor",
    "ContentMetadata",
    "ContentStats",
    "ExtractedContent",
    "ExtractOptions",
    "ImageInfo",
    "LinkInfo",
]
