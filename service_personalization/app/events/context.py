"""
Page and user context for trigger evaluation.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlsplit

from ..page.base import PageEnvironment


MOBILE_MAX_WIDTH = 768
TABLET_MAX_WIDTH = 1024


def device_type(viewport_width: int) -> str:
    """Classify a viewport width as mobile, tablet or desktop."""
    if viewport_width <= MOBILE_MAX_WIDTH:
        return "mobile"
    if viewport_width <= TABLET_MAX_WIDTH:
        return "tablet"
    return "desktop"


def browser_family(user_agent: str) -> str:
    """Best-effort browser family from a user agent string."""
    ua = user_agent or ""
    # Edge and Chrome both announce "Chrome"; Chrome and Safari both announce "Safari".
    if "Edg" in ua:
        return "Edge"
    if "Firefox" in ua:
        return "Firefox"
    if "Chrome" in ua:
        return "Chrome"
    if "Safari" in ua:
        return "Safari"
    return "Unknown"


@dataclass(frozen=True)
class PageContext:
    """Immutable facts about the current page load."""
    url: str
    path: str = "/"
    referrer: str = ""
    title: str = ""
    user_agent: str = ""
    device_type: str = "desktop"
    query_params: Dict[str, str] = field(default_factory=dict, hash=False, compare=False)
    utm: Dict[str, str] = field(default_factory=dict, hash=False, compare=False)

    @classmethod
    def from_environment(cls, environment: PageEnvironment) -> "PageContext":
        parts = urlsplit(environment.url)
        query_params: Dict[str, str] = {}
        for key, value in parse_qsl(parts.query, keep_blank_values=True):
            query_params.setdefault(key, value)

        return cls(
            url=environment.url,
            path=parts.path or "/",
            referrer=environment.referrer,
            title=environment.title,
            user_agent=environment.user_agent,
            device_type=device_type(environment.viewport_width),
            query_params=query_params,
            utm={key: value for key, value in query_params.items() if key.startswith("utm_")}
        )

    def template_values(self) -> Dict[str, Any]:
        values: Dict[str, Any] = dict(self.query_params)
        values.update(
            url=self.url,
            path=self.path,
            referrer=self.referrer,
            title=self.title,
            device_type=self.device_type,
        )
        return values


@dataclass(frozen=True)
class UserContext:
    """Visitor facts for the current page load."""
    session_id: str
    visitor_id: str
    visit_count: int = 1
    is_returning: bool = False
    browser: str = "Unknown"
    language: str = "en-US"
    timezone: str = "UTC"

    @classmethod
    def build(cls, state, environment: PageEnvironment) -> "UserContext":
        """Build from loaded VisitorState and the page environment."""
        return cls(
            session_id=state.session_id,
            visitor_id=state.visitor_id,
            visit_count=state.visit_count,
            is_returning=state.is_returning,
            browser=browser_family(environment.user_agent),
            language=environment.language,
            timezone=environment.timezone
        )

    def template_values(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "visitor_id": self.visitor_id,
            "visit_count": self.visit_count,
            "is_returning": self.is_returning,
            "browser": self.browser,
            "language": self.language,
            "timezone": self.timezone,
        }


def resolve_placeholder(key: str, user_context: Optional[UserContext],
                        page_context: Optional[PageContext]) -> Optional[str]:
    """Look a {{key}} placeholder up in the user context, then the page context."""
    for context in (user_context, page_context):
        if context is None:
            continue
        value = context.template_values().get(key)
        if value not in (None, ""):
            return str(value)
    return None
