from __future__ import annotations

import logging
import re
import shutil
import tempfile
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import stem
import stem.connection
import stem.process
from curl_cffi import CurlError
from curl_cffi import requests as curl_requests
from stem import Signal
from stem.control import Controller

from .errors import NetworkError, TransportError

logger = logging.getLogger(__name__)

_CSRF_RE = re.compile(r"X-CSRF-TOKEN['\"]?\s*:\s*['\"]([^'\"]+)['\"]")
SESSION_COOKIES = ("lcsc_session", "xsrf-token")


def extract_csrf_token(html: str) -> Optional[str]:
    """Pull the anti-forgery token the products page embeds in its inline JS."""
    match = _CSRF_RE.search(html)
    if not match:
        return None
    return match.group(1).strip() or None


class IdentityProvider(ABC):
    """Source of anonymized network identities for one transport."""

    @abstractmethod
    def start(self) -> None:
        """Bring the provider up; blocks until the first identity is usable."""

    @property
    @abstractmethod
    def proxy_url(self) -> Optional[str]:
        """Proxy the HTTP session must route through, or None for direct."""

    @abstractmethod
    def new_identity(self) -> None:
        """Switch to a new identity; returns once the provider confirms it."""

    def close(self) -> None:
        """Release provider resources."""


class TorIdentityProvider(IdentityProvider):
    """One Tor instance per worker, identities changed with SIGNAL NEWNYM.

    With launch=True a private tor process is started on its own SOCKS and
    control ports with a throwaway data directory. Otherwise the provider
    attaches to an already running instance. Launching uses signal-based
    timeouts, so the startup timeout only applies on the main thread.
    """

    def __init__(
        self,
        socks_port: int = 9050,
        control_port: int = 9051,
        *,
        launch: bool = True,
        tor_cmd: str = "tor",
        password: Optional[str] = None,
        startup_timeout: int = 300,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._socks_port = socks_port
        self._control_port = control_port
        self._launch = launch
        self._tor_cmd = tor_cmd
        self._password = password
        self._startup_timeout = startup_timeout
        self._sleep = sleep
        self._process: Any = None
        self._controller: Optional[Controller] = None
        self._data_dir: Optional[str] = None

    @property
    def proxy_url(self) -> str:
        # socks5h: let tor resolve hostnames too
        return f"socks5h://127.0.0.1:{self._socks_port}"

    def start(self) -> None:
        try:
            if self._launch and self._process is None:
                self._data_dir = tempfile.mkdtemp(prefix=f"tor-{self._socks_port}-")
                on_main = threading.current_thread() is threading.main_thread()
                logger.info("Starting tor (socks=%d control=%d)", self._socks_port, self._control_port)
                self._process = stem.process.launch_tor_with_config(
                    config={
                        "SocksPort": str(self._socks_port),
                        "ControlPort": str(self._control_port),
                        "DataDirectory": self._data_dir,
                        "CookieAuthentication": "1",
                    },
                    tor_cmd=self._tor_cmd,
                    timeout=self._startup_timeout if on_main else None,
                    take_ownership=True,
                )
            self._controller = Controller.from_port(port=self._control_port)
            self._controller.authenticate(password=self._password)
        except (OSError, stem.ControllerError, stem.connection.AuthenticationFailure) as exc:
            self.close()
            raise TransportError(f"tor on control port {self._control_port} unavailable: {exc}") from exc

    def new_identity(self) -> None:
        if self._controller is None:
            raise TransportError("tor controller not started")
        try:
            wait = self._controller.get_newnym_wait()
            if wait > 0:
                # tor ignores NEWNYM requests that arrive too close together
                self._sleep(wait)
            self._controller.signal(Signal.NEWNYM)
        except stem.ControllerError as exc:
            raise TransportError(f"NEWNYM failed on control port {self._control_port}: {exc}") from exc

    def close(self) -> None:
        if self._controller is not None:
            self._controller.close()
            self._controller = None
        if self._process is not None:
            self._process.kill()
            self._process.wait()
            self._process = None
        if self._data_dir is not None:
            shutil.rmtree(self._data_dir, ignore_errors=True)
            self._data_dir = None


class ProxyPoolProvider(IdentityProvider):
    """Round-robin over a fixed list of proxy URLs; each new identity is the next proxy."""

    def __init__(self, proxies: Sequence[str], start_index: int = 0) -> None:
        self._proxies: List[str] = [p.strip() for p in proxies if p and p.strip()]
        self._index = start_index % len(self._proxies) if self._proxies else 0

    @property
    def proxy_url(self) -> Optional[str]:
        if not self._proxies:
            return None
        return self._proxies[self._index]

    def start(self) -> None:
        if not self._proxies:
            raise TransportError("proxy pool is empty")

    def new_identity(self) -> None:
        if not self._proxies:
            raise TransportError("proxy pool is empty")
        self._index = (self._index + 1) % len(self._proxies)


SessionFactory = Callable[[Optional[str]], Any]


class AnonymizingTransport:
    """One isolated HTTP session bound to one identity provider.

    Owned by exactly one worker; none of its methods are thread-safe.
    """

    def __init__(
        self,
        provider: IdentityProvider,
        products_url: str,
        *,
        name: str = "transport",
        timeout: float = 30.0,
        impersonate: str = "chrome120",
        session_factory: Optional[SessionFactory] = None,
    ) -> None:
        self.provider = provider
        self.name = name
        self._products_url = products_url
        self._timeout = timeout
        self._impersonate = impersonate
        self._session_factory = session_factory or self._default_session
        self._session: Any = None
        self.headers: Dict[str, str] = {}
        self.cookies: Dict[str, str] = {}
        self.rotations = 0

    def _default_session(self, proxy_url: Optional[str]) -> Any:
        proxies = {"http": proxy_url, "https": proxy_url} if proxy_url else None
        return curl_requests.Session(impersonate=self._impersonate, proxies=proxies, timeout=self._timeout)

    def _ensure_session(self) -> Any:
        if self._session is None:
            self._session = self._session_factory(self.provider.proxy_url)
        return self._session

    def _drop_session(self) -> None:
        if self._session is not None:
            try:
                self._session.close()
            except (CurlError, OSError) as exc:
                logger.debug("%s: error closing session: %r", self.name, exc)
            self._session = None

    def acquire(self) -> None:
        """Open a fresh session and perform the cookie/CSRF handshake."""
        self._drop_session()
        self.headers = {}
        self.cookies = {}
        try:
            html = self.get_text(self._products_url)
        except NetworkError as exc:
            raise TransportError(f"{self.name}: handshake request failed: {exc}") from exc

        token = extract_csrf_token(html)
        if token is None:
            raise TransportError(f"{self.name}: no X-CSRF-TOKEN on {self._products_url}")
        self.headers["X-Csrf-Token"] = token

        jar = getattr(getattr(self._session, "cookies", None), "jar", None) or []
        for cookie in jar:
            if cookie.name.lower() in SESSION_COOKIES:
                self.cookies[cookie.name] = cookie.value
        if not self.cookies:
            logger.debug("%s: handshake returned no session cookies", self.name)

    def rotate(self) -> None:
        """Drop the connection pool and switch the provider to a new identity."""
        self._drop_session()
        try:
            self.provider.new_identity()
        except TransportError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise TransportError(f"{self.name}: identity rotation failed: {exc}") from exc
        self.rotations += 1
        logger.debug("%s: new identity (%d rotations)", self.name, self.rotations)

    def _request(self, method: str, url: str, data: Optional[Mapping[str, str]] = None) -> str:
        session = self._ensure_session()
        try:
            resp = session.request(
                method,
                url,
                data=dict(data) if data is not None else None,
                headers=self.headers or None,
                cookies=self.cookies or None,
                timeout=self._timeout,
            )
        except (CurlError, OSError) as exc:
            raise NetworkError(f"{method} {url}: {exc}") from exc

        status = getattr(resp, "status_code", None)
        if status is not None and status >= 400:
            raise NetworkError(f"{method} {url}: HTTP {status}", status_code=status)
        return resp.text

    def get_text(self, url: str) -> str:
        return self._request("GET", url)

    def post_form(self, url: str, data: Mapping[str, str]) -> str:
        return self._request("POST", url, data=data)

    def close(self) -> None:
        self._drop_session()
        self.provider.close()
