"""
fetchbox - sandboxed containers, browser contexts and web fetching as tools.

Lifecycle managers:
    from fetchbox import SandboxManager, DockerContainerDriver

    manager = SandboxManager(DockerContainerDriver())
    await manager.initialize()
    sandbox = await manager.create("scratch", {"memory_limit": "256m"})
    result = await manager.execute_command(sandbox.id, ["sh", "-c", "echo hi"])

    from fetchbox import BrowserSandboxManager, PlaywrightBrowserDriver

    browsers = BrowserSandboxManager(PlaywrightBrowserDriver())
    context_id = await browsers.create_context()
    page_id = await browsers.navigate(context_id, "https://example.com")

Fetch and extract:
    from fetchbox import ContentExtractor, FetchClient

    response = await FetchClient().get("https://example.com")
    content = ContentExtractor().extract(response.body, response.final_url)

Serving the tool catalogue over HTTP:
    fetchbox serve --port 8000
"""

__version__ = "1.0.0"

from fetchbox.exceptions import (  # noqa: E402,F401
    FetchboxError,
    FetchboxConfigError,
    SandboxError,
    SandboxNotFoundError,
    InvalidTransitionError,
    SandboxNotRunningError,
    DriverAllocationError,
    ExecutionError,
    ExecutionTimeoutError,
    BrowserError,
    ContextNotFoundError,
    PageNotFoundError,
    NavigationError,
    NavigationTimeoutError,
    FetchError,
    FetchErrorCode,
    ExtractError,
)
from fetchbox.events import LifecycleEvent, LifecycleEvents  # noqa: E402,F401
from fetchbox.sandbox import (  # noqa: E402,F401
    DockerContainerDriver,
    SandboxConfig,
    SandboxManager,
    SandboxStatus,
)
from fetchbox.browser import (  # noqa: E402,F401
    BrowserContextConfig,
    BrowserSandboxManager,
    BrowserType,
    PlaywrightBrowserDriver,
)
from fetchbox.fetch import FetchClient, FetchOptions, FetchResponse  # noqa: E402,F401
from fetchbox.extract import ContentExtractor, ExtractOptions  # noqa: E402,F401
