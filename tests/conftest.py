from __future__ import annotations

import json
from importlib import resources
from pathlib import Path
from typing import Any, Callable, Dict, List

import httpx
import pytest
from typer.testing import CliRunner

from vocabulary_federation.cli.main import app


@pytest.fixture(scope="session")
def registry_file() -> Path:
    sources_pkg = "vocabulary_federation.resources.sources"
    with resources.as_file(resources.files(sources_pkg) / "default.yaml") as ref:
        return Path(ref)


@pytest.fixture()
def cli_runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def cli_app():
    return app


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it served."""

    def __init__(self, handler: Callable[[httpx.Request], Any]):
        self.requests: List[httpx.Request] = []

        async def _handle(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            response = handler(request)
            if not isinstance(response, httpx.Response):
                response = await response
            return response

        super().__init__(_handle)

    def paths(self) -> List[str]:
        return [request.url.path for request in self.requests]


def json_response(payload: Any, status_code: int = 200, headers: Dict[str, str] | None = None) -> httpx.Response:
    return httpx.Response(
        status_code,
        content=json.dumps(payload).encode("utf-8"),
        headers={"content-type": "application/json", **(headers or {})},
    )
