"""
In-process stand-in for a SAP Gateway, used by the test modules.

Patch it over ``client.session.http.request``; it answers from a route table
keyed by (method, full URL) and records every request it receives.
"""

import json
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import requests
from requests.structures import CaseInsensitiveDict

BASE_URL = "https://sap.example.com/sap/opu/odata/sap/"
CATALOG_URL = "https://sap.example.com/sap/opu/odata/iwfnd/catalogservice;v=2/ServiceCollection"

_REASONS = {200: "OK", 201: "Created", 204: "No Content", 401: "Unauthorized",
            403: "Forbidden", 404: "Not Found", 500: "Internal Server Error"}


class RawHeaders:
    """Minimal urllib3-style header view that keeps repeated Set-Cookie headers."""

    def __init__(self, set_cookies: Optional[List[str]] = None):
        self._set_cookies = list(set_cookies or [])

    def getlist(self, name: str) -> List[str]:
        return list(self._set_cookies) if name.lower() == 'set-cookie' else []


def make_response(status: int = 200, json_body: Any = None, text: Optional[str] = None,
                  headers: Optional[Dict[str, str]] = None, set_cookies: Optional[List[str]] = None,
                  url: str = BASE_URL) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response.reason = _REASONS.get(status, "Unknown")
    response.url = url
    response.headers = CaseInsensitiveDict(headers or {})
    if json_body is not None:
        response._content = json.dumps(json_body).encode('utf-8')
        response.headers.setdefault('Content-Type', 'application/json')
    elif text is not None:
        response._content = text.encode('utf-8')
    else:
        response._content = b''
    if set_cookies:
        response.headers['Set-Cookie'] = ', '.join(set_cookies)
    response.raw = SimpleNamespace(headers=RawHeaders(set_cookies))
    return response


class FakeBackend:
    """Callable replacement for ``requests.Session.request``."""

    def __init__(self, default: Optional[requests.Response] = None):
        self.routes: Dict[tuple, Any] = {}
        self.calls: List[SimpleNamespace] = []
        self.default = default

    def add(self, method: str, url: str, response: Any) -> 'FakeBackend':
        """Register a response, an exception to raise, or a list answered in order."""
        self.routes[(method.upper(), url)] = response
        return self

    def __call__(self, method: str, url: str, headers: Optional[Dict[str, str]] = None, **kwargs) -> requests.Response:
        self.calls.append(SimpleNamespace(method=method, url=url, headers=dict(headers or {}), kwargs=kwargs))
        answer = self.routes.get((method.upper(), url), self.default)
        if isinstance(answer, list):
            answer = answer.pop(0) if len(answer) > 1 else answer[0]
        if answer is None:
            return make_response(404, url=url)
        if isinstance(answer, BaseException):
            raise answer
        return answer

    def calls_to(self, method: str, url: Optional[str] = None) -> List[SimpleNamespace]:
        return [call for call in self.calls
                if call.method == method.upper() and (url is None or call.url == url)]

    @property
    def last(self) -> SimpleNamespace:
        return self.calls[-1]
