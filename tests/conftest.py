import time

import pytest
import requests

from job_registry import JobRegistry
from storyboard import SceneStore

API_URL = "https://images.example.test/api/image/nano2"


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, content=b"", headers=None):
        self.status_code = status_code
        self._json = json_data
        self.content = content
        self.headers = headers or {}
        self.text = "" if json_data is None else str(json_data)

    def json(self):
        if self._json is None:
            raise ValueError("no json")
        return self._json


class FakeSession:
    """Stands in for requests.Session: replies from a script and records every call."""

    def __init__(self, replies=None):
        self.replies = list(replies or [])
        self.calls = []

    def request(self, method, url, timeout=None, **kwargs):
        self.calls.append((method, url))
        if not self.replies:
            raise AssertionError(f"unexpected {method} {url}")
        reply = self.replies.pop(0)
        if callable(reply):
            reply = reply(method, url)
        if isinstance(reply, Exception):
            raise reply
        return reply

    def count(self, method, url=None):
        return sum(1 for m, u in self.calls if m == method and (url is None or u == url))


def image_response(content=b"\x89PNG", content_type="image/png"):
    return FakeResponse(200, content=content, headers={"Content-Type": content_type})


def wait_for(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def registry():
    return JobRegistry()


@pytest.fixture
def store():
    return SceneStore("test-project")


@pytest.fixture
def transport_error():
    return requests.ConnectionError("connection reset")
