import json as jsonlib

import pytest

from delta_wizard.api_client import ApiClient
from delta_wizard.models import SelectedFile


class FakeResponse:
    def __init__(self, status_code=200, payload=None, content=None, headers=None):
        self.status_code = status_code
        self._payload = payload
        if content is None:
            content = b"" if payload is None else jsonlib.dumps(payload).encode("utf-8")
        self.content = content
        self.headers = headers or {}

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload


class FakeSession:
    """Records requests and answers from a route table keyed by (method, path suffix)."""

    def __init__(self):
        self.headers = {}
        self.calls = []
        self.routes = {}

    def add(self, method, path, response):
        self.routes[(method, path)] = response

    def request(self, method, url, timeout=None, params=None, json=None):
        self.calls.append({"method": method, "url": url, "params": params, "json": json})
        path = url.split("://", 1)[-1].split("/", 1)[-1]
        path = "/" + path
        response = self.routes.get((method, path))
        if response is None:
            return FakeResponse(404, {"detail": f"No route for {method} {path}"})
        if callable(response):
            return response(params=params, json=json)
        return response

    def last(self, method=None):
        calls = [c for c in self.calls if method is None or c["method"] == method]
        return calls[-1]


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def api(fake_session):
    return ApiClient(base_url="http://backend.test", session=fake_session)


@pytest.fixture
def two_files():
    return [
        SelectedFile(
            file_id="f-old",
            filename="positions_2024_01.csv",
            columns=["id", "amount", "date", "txn_id", "region"],
            total_rows=120,
        ),
        SelectedFile(
            file_id="f-new",
            filename="positions_2024_02.csv",
            columns=["id", "amount", "date", "transaction_id", "region"],
            total_rows=125,
        ),
    ]
