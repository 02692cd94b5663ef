"""HTTP fetching."""

from fetchbox.fetch.client import FetchClient
from fetchbox.fetch.models import FetchOptions, FetchResponse

__all__ = ["FetchClient", "FetchOptions", "FetchResponse"]
