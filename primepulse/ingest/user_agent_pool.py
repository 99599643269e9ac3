"""Fixed pool of browser user agents rotated across fetch attempts."""

import logging
import random
from dataclasses import dataclass
from typing import Optional, Sequence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserAgentInfo:
    """User agent with metadata."""
    user_agent: str
    browser: str  # 'chrome', 'firefox', 'safari', 'edge'
    platform: str  # 'windows', 'mac', 'linux'


def _default_agents() -> list[str]:
    chrome_windows = [
        f"Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/{v}.0.0.0 Safari/537.36"
        for v in range(118, 124)
    ]
    chrome_macos = [
        f"Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/{v}.0.0.0 Safari/537.36"
        for v in range(118, 124)
    ]
    chrome_linux = [
        f"Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/{v}.0.0.0 Safari/537.36"
        for v in range(118, 124)
    ]
    firefox = [
        f"Mozilla/5.0 ({os}; rv:{v}.0) Gecko/20100101 Firefox/{v}.0"
        for os in ("Windows NT 10.0; Win64; x64", "Macintosh; Intel Mac OS X 10.15")
        for v in range(119, 123)
    ]
    safari = [
        f"Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/{v}.0 Safari/605.1.15"
        for v in range(16, 18)
    ]
    edge = [
        f"Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/{v}.0.0.0 Safari/537.36 Edg/{v}.0.0.0"
        for v in range(118, 124)
    ]
    return chrome_windows + chrome_macos + chrome_linux + firefox + safari + edge


class UserAgentPool:
    """
    Pool of realistic user agents.

    ``get_random`` avoids handing out a recently used agent, so consecutive
    retries of the same request present different browsers.
    """

    def __init__(self, agents: Optional[Sequence[str]] = None, recent_size: int = 5):
        self._user_agents = [self._describe(ua) for ua in (agents or _default_agents())]
        if not self._user_agents:
            raise ValueError("user agent pool cannot be empty")
        self._recent_used: list[str] = []
        self._recent_size = min(recent_size, len(self._user_agents) - 1)

    def __len__(self) -> int:
        return len(self._user_agents)

    @staticmethod
    def _describe(ua_string: str) -> UserAgentInfo:
        if "Edg/" in ua_string:
            browser = "edge"
        elif "Chrome" in ua_string:
            browser = "chrome"
        elif "Firefox" in ua_string:
            browser = "firefox"
        elif "Safari" in ua_string:
            browser = "safari"
        else:
            browser = "chrome"

        if "Windows" in ua_string:
            platform = "windows"
        elif "Macintosh" in ua_string:
            platform = "mac"
        else:
            platform = "linux"

        return UserAgentInfo(user_agent=ua_string, browser=browser, platform=platform)

    def get_random(self, exclude_recent: bool = True) -> str:
        """
        Get a random user agent from the pool.

        Args:
            exclude_recent: Exclude recently used user agents

        Returns:
            User agent string
        """
        available = self._user_agents
        if exclude_recent and self._recent_used:
            available = [
                ua for ua in self._user_agents
                if ua.user_agent not in self._recent_used
            ] or self._user_agents

        selected = random.choice(available).user_agent

        if self._recent_size > 0:
            self._recent_used.append(selected)
            if len(self._recent_used) > self._recent_size:
                self._recent_used.pop(0)

        return selected
