"""
HTTP session for one SAP OData connection.

Holds the outbound connection settings and the ephemeral session state
(connected flag, CSRF token, cookies). Every request goes through
``ODataSession.request``, which attaches the held token and cookies and
captures new ones from the response.
"""

import sys
import threading
from datetime import datetime
from http.cookiejar import DefaultCookiePolicy
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

import requests

from .constants import CSRF_HEADER, CSRF_SENTINELS, USER_AGENT
from .errors import NO_RESPONSE_MESSAGE, NetworkError, ODataError, describe_error, error_for_response
from .models import ConnectionConfig


class SessionState:
    """Mutable session state. Only the owning ODataSession changes it."""

    def __init__(self):
        self.connected = False
        self.csrf_token: Optional[str] = None
        self.cookies: List[str] = []

    def clear(self) -> None:
        self.connected = False
        self.csrf_token = None
        self.cookies = []


def extract_set_cookies(response: requests.Response) -> List[str]:
    """Return the ``name=value`` prefix of every Set-Cookie header, attributes dropped."""
    raw_headers = getattr(response.raw, 'headers', None)
    if raw_headers is not None and hasattr(raw_headers, 'getlist'):
        values = raw_headers.getlist('Set-Cookie')
    else:
        header = response.headers.get('Set-Cookie')
        values = [header] if header else []
    return [value.split(';', 1)[0].strip() for value in values if value]


class ODataSession:
    """One requests.Session plus the SAP session state replayed on each request."""

    def __init__(self, config: ConnectionConfig, verbose: bool = False):
        self.config = config
        self.verbose = verbose
        self.base_url = config.base_url if config.base_url.endswith('/') else config.base_url + '/'
        self.state = SessionState()
        self._lock = threading.Lock()

        self.http = requests.Session()
        self.http.auth = (config.username, config.password)
        self.http.verify = config.validate_ssl
        # Cookies are replayed explicitly from the session state, never from the jar
        self.http.cookies.set_policy(DefaultCookiePolicy(allowed_domains=[]))
        self.http.headers.update({
            'Content-Type': 'application/json',
            'Accept': 'application/json',
            'User-Agent': USER_AGENT,
        })
        if config.client:
            self.http.headers['sap-client'] = config.client

    def log_verbose(self, message: str):
        """Prints message to stderr only if verbose mode is enabled."""
        if self.verbose:
            timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
            print(f"[{timestamp} Session VERBOSE] {message}", file=sys.stderr)

    @property
    def connected(self) -> bool:
        return self.state.connected

    def mark_connected(self, connected: bool = True) -> None:
        with self._lock:
            self.state.connected = connected

    def clear(self) -> None:
        with self._lock:
            self.state.clear()

    def url_for(self, path: str) -> str:
        """Resolve a path against the base URL. Relative '../' paths leave the service root."""
        if path.startswith('../'):
            return urljoin(self.base_url, path)
        return self.base_url + path.lstrip('/')

    def _session_headers(self, method: str) -> Dict[str, str]:
        headers = {}
        with self._lock:
            if self.state.csrf_token and method.upper() != 'GET':
                headers[CSRF_HEADER] = self.state.csrf_token
            if self.state.cookies:
                headers['Cookie'] = '; '.join(self.state.cookies)
        return headers

    def _capture_session_headers(self, response: requests.Response) -> None:
        csrf_token = response.headers.get(CSRF_HEADER)
        cookies = extract_set_cookies(response)
        with self._lock:
            if csrf_token and csrf_token.lower() not in CSRF_SENTINELS:
                self.state.csrf_token = csrf_token
                self.log_verbose(f"Captured CSRF token: {csrf_token[:20]}...")
            if cookies:
                self.state.cookies = cookies
                self.log_verbose(f"Captured {len(cookies)} cookie(s)")
            if response.status_code == 401:
                # Stale credentials: force the next operation to fail fast
                self.state.clear()
                self.log_verbose("Received 401, session state cleared")

    def request(self, method: str, path: str, headers: Optional[Dict[str, str]] = None,
                timeout: Optional[float] = None, **kwargs: Any) -> requests.Response:
        """Perform a blocking request. Raises an ODataError subclass for any failure."""
        url = self.url_for(path)
        request_headers = self._session_headers(method)
        if headers:
            request_headers.update(headers)
        effective_timeout = self.config.timeout_seconds if timeout is None else min(timeout, self.config.timeout_seconds)

        self.log_verbose(f"Requesting: {method.upper()} {url}")
        try:
            response = self.http.request(method.upper(), url, headers=request_headers,
                                         timeout=effective_timeout, **kwargs)
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            self.log_verbose(f"Request failed with exception: {e}")
            raise NetworkError(NO_RESPONSE_MESSAGE) from e
        except requests.exceptions.RequestException as e:
            self.log_verbose(f"Request failed with exception: {e}")
            raise ODataError(describe_error(e)) from e

        self._capture_session_headers(response)
        if response.status_code >= 400:
            self.log_verbose(f"Response {response.status_code} for {method.upper()} {url}")
            raise error_for_response(response)
        return response
