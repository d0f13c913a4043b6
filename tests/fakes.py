"""
Test doubles shared across suites
"""

from typing import Any, Callable, Dict, List

import httpx

from core.exceptions import AIServiceError


class FakeAIClient:
    """
    Deterministic stand-in for AIClient.

    ``responses`` is either a dict returned for every call, or a callable
    receiving (system_prompt, content) and returning a dict. ``fail=True``
    raises AIServiceError instead.
    """

    def __init__(self, responses=None, fail: bool = False, configured: bool = True):
        self.responses = responses if responses is not None else {}
        self.fail = fail
        self.configured = configured
        self.calls: List[Dict[str, str]] = []

    async def complete_json(self, system_prompt: str, content: str) -> Dict[str, Any]:
        self.calls.append({"system_prompt": system_prompt, "content": content})
        if self.fail:
            raise AIServiceError("AI service returned HTTP 503", context={"status_code": 503})
        if callable(self.responses):
            return self.responses(system_prompt, content)
        return dict(self.responses)


def json_transport(routes: Dict[str, Any], status_code: int = 200) -> httpx.MockTransport:
    """MockTransport answering each URL path with a JSON body; unknown paths get 404."""

    def handler(request: httpx.Request) -> httpx.Response:
        body = routes.get(request.url.path)
        if body is None:
            return httpx.Response(404, json={"error": "not found"})
        return httpx.Response(status_code, json=body)

    return httpx.MockTransport(handler)


def text_transport(routes: Dict[str, str], content_type: str = "text/html") -> httpx.MockTransport:
    """MockTransport answering each URL path with a text body."""

    def handler(request: httpx.Request) -> httpx.Response:
        body = routes.get(request.url.path)
        if body is None:
            return httpx.Response(404, text="not found")
        return httpx.Response(200, text=body, headers={"content-type": content_type})

    return httpx.MockTransport(handler)


class CountingTransport(httpx.MockTransport):
    """MockTransport that remembers every request it served."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.requests: List[httpx.Request] = []

        def counting(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(counting)
