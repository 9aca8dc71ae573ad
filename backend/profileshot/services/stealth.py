"""Browser hardening applied to every page the session opens.

- an init script that masks the usual automation tells
- a request filter that keeps site/challenge traffic and drops heavy media
- a console filter that hides the site's known benign script noise
- randomized human pacing between page actions
"""

import asyncio
import enum
import json
import logging
import random
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

CHROME_USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
]

SITE_HOST = "linkedin.com"
SITE_ORIGIN = "https://www.linkedin.com"

# Resource types always let through
ALLOWED_RESOURCE_TYPES = frozenset(
    {"script", "xhr", "fetch", "document", "stylesheet", "other", "websocket"}
)
# Resource types dropped unless the URL is on the media allow-list
HEAVY_RESOURCE_TYPES = frozenset({"image", "media", "font"})

# Third-party hosts and paths the site and its challenges depend on
ALLOWED_URL_MARKERS = (
    "linkedin.com",
    "licdn.com",
    "merchantpool",
    "amazonaws.com",
    "cloudfront.net",
    "google",
    "gstatic",
    "recaptcha",
    "captcha",
    "challenge",
    "security",
    "checkpoint",
    "verification",
)
# Images worth loading: the profile photo, and anything a challenge renders
MEDIA_ALLOW_MARKERS = (
    "profile-displayphoto",
    "captcha",
    "recaptcha",
    "challenge",
    "verification",
)

CONSOLE_IGNORE_PATTERNS = (
    "Notification",
    "Illegal invocation",
    "Cannot assign to read only property",
    "Cannot read properties of undefined",
    "_initMicrosoftAuth",
    "MD5Hash",
    "merchantpool",
    "licdn.com",
    "window.pilot",
    "This request has been blocked",
    "Failed to load resource",
    "blob:https://",
    "d2d1hqaoo12243.cloudfront.net",
    "chrome-extension",
    "chrome.loadTimes",
    "userAgentMetadata",
    "LinkedInDependencies",
    "gsi/client",
    "Network Error",
    "recaptcha",
)

DOCUMENT_HEADERS = {
    "Accept-Language": "en-US,en;q=0.9",
    "sec-ch-ua": '"Google Chrome";v="131", "Chromium";v="131", "Not_A Brand";v="24"',
    "sec-ch-ua-mobile": "?0",
    "sec-ch-ua-platform": '"Windows"',
}

# Accept header the site's own API client sends
_API_ACCEPT = "application/vnd.linkedin.normalized+json+2.1"


class RouteDecision(str, enum.Enum):
    CONTINUE = "continue"
    CONTINUE_WITH_HEADERS = "continue_with_headers"
    ABORT = "abort"


def _hostname(url: str) -> str:
    try:
        after_scheme = url.split("//", 1)[1]
        return after_scheme.split("/", 1)[0].split(":")[0].lower()
    except IndexError:
        return ""


def classify_request(url: str, resource_type: str) -> RouteDecision:
    """Decide what to do with an outgoing request."""
    host = _hostname(url)
    if host == SITE_HOST or host.endswith("." + SITE_HOST):
        return RouteDecision.CONTINUE_WITH_HEADERS

    lowered = url.lower()
    if resource_type in ALLOWED_RESOURCE_TYPES or any(
        marker in lowered for marker in ALLOWED_URL_MARKERS
    ):
        return RouteDecision.CONTINUE
    if resource_type in HEAVY_RESOURCE_TYPES and not any(
        marker in lowered for marker in MEDIA_ALLOW_MARKERS
    ):
        return RouteDecision.ABORT
    return RouteDecision.CONTINUE


def site_headers(request) -> dict:
    """Headers for a same-site request, merged over what the page sent."""
    headers = dict(request.headers)
    if request.resource_type in ("xhr", "fetch"):
        headers.setdefault("referer", SITE_ORIGIN + "/")
        headers["origin"] = SITE_ORIGIN
        if "/voyager/api" in request.url:
            headers["accept"] = _API_ACCEPT
    headers.setdefault("accept-language", DOCUMENT_HEADERS["Accept-Language"])
    return headers


async def route_handler(route, request):
    """Playwright route handler applying ``classify_request``."""
    decision = classify_request(request.url, request.resource_type)
    if decision is RouteDecision.ABORT:
        await route.abort()
    elif decision is RouteDecision.CONTINUE_WITH_HEADERS:
        await route.continue_(headers=site_headers(request))
    else:
        await route.continue_()


def is_ignored_console_message(text: str) -> bool:
    return any(pattern in text for pattern in CONSOLE_IGNORE_PATTERNS)


def forward_console_message(message) -> None:
    """Log page console errors/warnings that are not known site noise."""
    if message.type not in ("error", "warning"):
        return
    text = message.text
    if is_ignored_console_message(text):
        return
    logger.debug(f"Page console {message.type}: {text}")


def forward_page_error(error) -> None:
    text = str(error)
    if is_ignored_console_message(text):
        return
    logger.debug(f"Page error: {text}")


def build_stealth_script(hw_concurrency: int = 8, device_memory: int = 8) -> str:
    """Init script run before any page script on every navigation."""
    ignore = json.dumps(list(CONSOLE_IGNORE_PATTERNS))
    return f"""
// navigator.webdriver
Object.defineProperty(navigator, 'webdriver', {{ get: () => undefined }});
delete navigator.__proto__.webdriver;

// languages and hardware, fixed per session
Object.defineProperty(navigator, 'languages', {{ get: () => ['en-US', 'en-GB', 'en'] }});
Object.defineProperty(navigator, 'hardwareConcurrency', {{ get: () => {hw_concurrency} }});
Object.defineProperty(navigator, 'deviceMemory', {{ get: () => {device_memory} }});

// plugins: headless Chromium reports none
const fakePlugins = [
    {{ name: 'Chrome PDF Plugin', filename: 'internal-pdf-viewer', description: 'Portable Document Format' }},
    {{ name: 'Chrome PDF Viewer', filename: 'mhjfbmdgcfjbbpaeojofohoefgiehjai', description: '' }},
    {{ name: 'Native Client', filename: 'internal-nacl-plugin', description: '' }},
];
Object.defineProperty(navigator, 'plugins', {{
    get: () => {{
        const list = fakePlugins.slice();
        list.item = (i) => list[i];
        list.namedItem = (n) => list.find(p => p.name === n);
        list.refresh = () => {{}};
        return list;
    }},
}});

// chrome.runtime exists in a real Chrome window
window.chrome = window.chrome || {{}};
window.chrome.runtime = window.chrome.runtime || {{ connect: () => {{}}, sendMessage: () => {{}} }};

// Notification stub and a permissions.query that agrees with it
if (!window.Notification) {{
    window.Notification = {{ permission: 'default', requestPermission: () => Promise.resolve('default') }};
}}
if (navigator.permissions && navigator.permissions.query) {{
    const originalQuery = navigator.permissions.query.bind(navigator.permissions);
    navigator.permissions.query = (params) => (
        params && params.name === 'notifications'
            ? Promise.resolve({{ state: Notification.permission }})
            : originalQuery(params)
    );
}}

// blocking dialogs would stall an unattended session
window.alert = () => {{}};
window.confirm = () => true;
window.prompt = () => null;

// swallow known benign site errors so they never surface as page errors
const ignoredErrors = {ignore};
window.addEventListener('error', (event) => {{
    const text = String((event && event.message) || '');
    if (ignoredErrors.some((p) => text.includes(p))) {{
        event.preventDefault();
    }}
}}, true);
"""


def random_viewport(randomize: bool, width: int, height: int) -> dict:
    if not randomize:
        return {"width": width, "height": height}
    return {"width": random.randint(1200, 1899), "height": random.randint(800, 1199)}


async def human_pause(
    low: float,
    high: float,
    *,
    enabled: bool = True,
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
) -> None:
    """Sleep a random interval in [low, high] seconds when pacing is enabled."""
    if not enabled:
        return
    await (sleep or asyncio.sleep)(random.uniform(low, high))
