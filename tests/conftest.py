"""Shared fixtures for the token engine tests."""

import asyncio
import json
from pathlib import Path
from typing import List, Optional

import pytest

from rest_client_oauth2.browser import RedirectResult
from rest_client_oauth2.settings import OAuth2Settings


class FakeBrowserSession:
    """BrowserSession that "redirects" to a fixed URL without a real browser."""

    def __init__(
        self,
        redirect_url: Optional[str] = None,
        error: Optional[BaseException] = None,
        hang: bool = False,
    ):
        self.redirect_url = redirect_url
        self.error = error
        self.hang = hang
        self.launched = False
        self.closed = False
        self.navigations: List[tuple] = []

    async def launch(self) -> None:
        self.launched = True

    async def navigate_and_intercept_redirect(self, url: str, local_host: str):
        self.navigations.append((url, local_host))
        if self.error is not None:
            raise self.error
        if self.hang:
            await asyncio.Event().wait()
        return RedirectResult.from_url(self.redirect_url)

    async def close(self) -> None:
        self.closed = True


class FakeHelper:
    """HelperProcess that replays scripted stdout lines.

    A scripted entry that is an exception is raised instead of returned.
    """

    def __init__(self, lines, exit_status=0, hang=False, write_error=None):
        self.pending = list(lines)
        self.exit_status = exit_status
        self.hang = hang
        self.write_error = write_error
        self.written = []
        self.spawned = False
        self.closed = False
        self.terminated = False

    async def spawn(self):
        self.spawned = True

    async def await_line(self):
        if self.pending:
            line = self.pending.pop(0)
            if isinstance(line, BaseException):
                raise line
            return line
        if self.hang:
            await asyncio.Event().wait()
        return None

    async def write_line(self, line):
        if self.write_error is not None:
            raise self.write_error
        self.written.append(line)

    async def await_close(self):
        self.closed = True
        return self.exit_status

    async def terminate(self):
        self.terminated = True


@pytest.fixture
def workspace(tmp_path) -> Path:
    """Provide an empty workspace folder."""
    path = tmp_path / "workspace"
    path.mkdir()
    return path


@pytest.fixture
def settings(workspace) -> OAuth2Settings:
    """Provide settings pointing at the workspace."""
    return OAuth2Settings(workspace=workspace, authorization_timeout=5)


@pytest.fixture
def provider_document() -> dict:
    """Provide a provider file document."""
    return {
        "config": {
            "clientId": "c1",
            "clientSecret": "s1",
            "authorizationUrl": "https://auth.example.com/authorize",
            "tokenUrl": "https://auth.example.com/token",
            "redirectUri": "http://localhost/callback",
            "useBasicAuthorizationHeader": True,
        },
        "options": {
            "scope": ["openid", "email"],
            "accessType": "offline",
            "additionalTokenRequestData": {"audience": "api"},
        },
    }


@pytest.fixture
def write_provider(workspace):
    """Write a provider file into the workspace."""

    def _write(name: str, document: dict) -> Path:
        directory = workspace / ".rest-client" / "oauth2" / "providers"
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"{name}.json"
        path.write_text(json.dumps(document))
        return path

    return _write


@pytest.fixture
def write_tokens(workspace):
    """Write a token file into the workspace."""

    def _write(name: str, tokens: dict) -> Path:
        directory = workspace / ".rest-client" / "oauth2" / "tokens"
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"{name}.json"
        path.write_text(json.dumps(tokens, indent=2))
        return path

    return _write


@pytest.fixture
def tokens_path(workspace):
    """Path of a provider's token file."""

    def _path(name: str) -> Path:
        return workspace / ".rest-client" / "oauth2" / "tokens" / f"{name}.json"

    return _path
