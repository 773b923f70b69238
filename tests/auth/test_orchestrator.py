"""Tests for OAuth2Orchestrator."""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from rest_client_oauth2.authorization import AuthorizationCodeAcquirer
from rest_client_oauth2.errors import (
    AuthorizationError,
    ConfigurationError,
    HelperProtocolError,
    ProviderNotFoundError,
    StorageError,
    TokenExchangeError,
    TokensNotFoundError,
    WorkspaceNotOpenError,
)
from rest_client_oauth2.orchestrator import FlowState, OAuth2Orchestrator
from rest_client_oauth2.provider_config import TokenSet
from rest_client_oauth2.settings import OAuth2Settings
from rest_client_oauth2.token_exchange import TokenExchangeClient
from rest_client_oauth2.token_store import WorkspaceTokenStore

from conftest import FakeBrowserSession, FakeHelper


class TokenEndpoint:
    """Mock token endpoint returning queued responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status_code, payload = self.responses.pop(0)
        return httpx.Response(status_code, json=payload)


class TestOAuth2Orchestrator:
    """Test OAuth2Orchestrator flows."""

    @pytest.fixture
    def store(self, settings):
        """Provide a workspace store."""
        return WorkspaceTokenStore(settings)

    @pytest.fixture
    def make_orchestrator(self, settings, store):
        """Build an orchestrator around a fake browser and a mock token endpoint."""

        def _make(endpoint: TokenEndpoint, redirect_url: str = None):
            browser = FakeBrowserSession(
                redirect_url or "http://localhost/callback?code=abc&state=x"
            )
            acquirer = AuthorizationCodeAcquirer(settings, browser_factory=lambda: browser)
            exchange_client = TokenExchangeClient(
                transport=httpx.MockTransport(endpoint.handler)
            )
            orchestrator = OAuth2Orchestrator(
                store=store,
                acquirer=acquirer,
                exchange_client=exchange_client,
                settings=settings,
            )
            return orchestrator, browser

        return _make

    def test_init_builds_collaborators_from_settings(self, settings):
        """Test initialization with default collaborators."""
        orchestrator = OAuth2Orchestrator(settings=settings)

        assert isinstance(orchestrator.store, WorkspaceTokenStore)
        assert isinstance(orchestrator.acquirer, AuthorizationCodeAcquirer)
        assert orchestrator.exchange_client.timeout == settings.exchange_timeout
        assert orchestrator.store.settings is settings

    async def test_get_access_token(
        self, make_orchestrator, write_provider, provider_document, tokens_path
    ):
        """Test the full authorization code flow."""
        write_provider("google", provider_document)
        endpoint = TokenEndpoint(
            (200, {"access_token": "A", "refresh_token": "R", "expires_in": 3600})
        )
        orchestrator, browser = make_orchestrator(endpoint)

        tokens = await orchestrator.get_access_token("google")

        assert tokens.access_token == "A"
        assert json.loads(tokens_path("google").read_text()) == {
            "access_token": "A",
            "refresh_token": "R",
            "expires_in": 3600,
        }
        assert browser.closed
        form = dict(httpx.QueryParams(endpoint.requests[0].content.decode()))
        assert form == {
            "code": "abc",
            "grant_type": "authorization_code",
            "redirect_uri": "http://localhost/callback",
            "audience": "api",
        }
        assert orchestrator.last_flow("google").states == [
            FlowState.READING_CONFIG,
            FlowState.ACQUIRING_CODE,
            FlowState.EXCHANGING,
            FlowState.PERSISTING_TOKENS,
            FlowState.DONE,
        ]

    async def test_get_access_token_denied(
        self, make_orchestrator, write_provider, provider_document, tokens_path
    ):
        """Test that a denied consent writes no token file."""
        write_provider("google", provider_document)
        endpoint = TokenEndpoint()
        orchestrator, browser = make_orchestrator(
            endpoint, "http://localhost/callback?error=access_denied"
        )

        with pytest.raises(AuthorizationError) as exc_info:
            await orchestrator.get_access_token("google")

        assert exc_info.value.error == "access_denied"
        assert not tokens_path("google").exists()
        assert endpoint.requests == []
        assert browser.closed
        record = orchestrator.last_flow("google")
        assert record.state == FlowState.FAILED
        assert record.states[-2] == FlowState.ACQUIRING_CODE
        assert record.error is exc_info.value

    async def test_get_access_token_exchange_failure_keeps_existing_file(
        self,
        make_orchestrator,
        write_provider,
        write_tokens,
        provider_document,
    ):
        """Test that a failed exchange leaves the token file byte-for-byte unchanged."""
        write_provider("google", provider_document)
        path = write_tokens("google", {"access_token": "old", "refresh_token": "R"})
        before = path.read_bytes()
        orchestrator, _ = make_orchestrator(
            TokenEndpoint((500, {"error": "server_error"}))
        )

        with pytest.raises(TokenExchangeError) as exc_info:
            await orchestrator.get_access_token("google")

        assert exc_info.value.status_code == 500
        assert path.read_bytes() == before

    async def test_get_access_token_unknown_provider(self, make_orchestrator):
        orchestrator, browser = make_orchestrator(TokenEndpoint())

        with pytest.raises(ProviderNotFoundError):
            await orchestrator.get_access_token("missing")
        assert not browser.launched

    async def test_get_access_token_without_workspace(self):
        orchestrator = OAuth2Orchestrator(settings=OAuth2Settings(workspace=None))

        with pytest.raises(WorkspaceNotOpenError):
            await orchestrator.get_access_token("google")

    async def test_refresh_token_merges_only_access_token(
        self, make_orchestrator, write_provider, write_tokens, provider_document, tokens_path
    ):
        """Test that refresh keeps every stored field except access_token."""
        write_provider("google", provider_document)
        write_tokens("google", {"access_token": "A", "refresh_token": "R", "scope": "x"})
        endpoint = TokenEndpoint((200, {"access_token": "B"}))
        orchestrator, browser = make_orchestrator(endpoint)

        tokens = await orchestrator.refresh_token("google")

        expected = {"access_token": "B", "refresh_token": "R", "scope": "x"}
        assert tokens.to_dict() == expected
        assert json.loads(tokens_path("google").read_text()) == expected
        assert not browser.launched
        form = dict(httpx.QueryParams(endpoint.requests[0].content.decode()))
        assert form == {
            "refresh_token": "R",
            "grant_type": "refresh_token",
            "redirect_uri": "http://localhost/callback",
        }
        assert orchestrator.last_flow("google").states == [
            FlowState.READING_CONFIG,
            FlowState.READING_TOKENS,
            FlowState.EXCHANGING,
            FlowState.MERGING,
            FlowState.PERSISTING_TOKENS,
            FlowState.DONE,
        ]

    async def test_refresh_ignores_new_refresh_token(
        self, make_orchestrator, write_provider, write_tokens, provider_document
    ):
        write_provider("google", provider_document)
        write_tokens("google", {"access_token": "A", "refresh_token": "R"})
        orchestrator, _ = make_orchestrator(
            TokenEndpoint((200, {"access_token": "B", "refresh_token": "R2"}))
        )

        tokens = await orchestrator.refresh_token("google")

        assert tokens.refresh_token == "R"

    async def test_two_sequential_refreshes(
        self, make_orchestrator, write_provider, write_tokens, provider_document, tokens_path
    ):
        """Test that reapplying the merge rule only ever updates access_token."""
        write_provider("google", provider_document)
        write_tokens("google", {"access_token": "A", "refresh_token": "R", "scope": "x"})
        endpoint = TokenEndpoint((200, {"access_token": "B"}), (200, {"access_token": "C"}))
        orchestrator, _ = make_orchestrator(endpoint)

        await orchestrator.refresh_token("google")
        await orchestrator.refresh_token("google")

        assert json.loads(tokens_path("google").read_text()) == {
            "access_token": "C",
            "refresh_token": "R",
            "scope": "x",
        }
        for request in endpoint.requests:
            assert dict(httpx.QueryParams(request.content.decode()))["refresh_token"] == "R"

    async def test_refresh_failure_leaves_file_unchanged(
        self, make_orchestrator, write_provider, write_tokens, provider_document
    ):
        write_provider("google", provider_document)
        path = write_tokens("google", {"access_token": "A", "refresh_token": "R"})
        before = path.read_bytes()
        orchestrator, _ = make_orchestrator(
            TokenEndpoint((401, {"error": "invalid_grant"}))
        )

        with pytest.raises(TokenExchangeError):
            await orchestrator.refresh_token("google")

        assert path.read_bytes() == before

    async def test_refresh_without_stored_tokens(
        self, make_orchestrator, write_provider, provider_document
    ):
        write_provider("google", provider_document)
        endpoint = TokenEndpoint()
        orchestrator, _ = make_orchestrator(endpoint)

        with pytest.raises(TokensNotFoundError):
            await orchestrator.refresh_token("google")
        assert endpoint.requests == []

    async def test_refresh_without_refresh_token(
        self, make_orchestrator, write_provider, write_tokens, provider_document
    ):
        write_provider("google", provider_document)
        write_tokens("google", {"access_token": "A"})
        endpoint = TokenEndpoint()
        orchestrator, _ = make_orchestrator(endpoint)

        with pytest.raises(StorageError, match="no refresh_token"):
            await orchestrator.refresh_token("google")
        assert endpoint.requests == []

    async def test_concurrent_refreshes_are_serialized(
        self, settings, write_provider, write_tokens, provider_document
    ):
        """Test that same-provider flows never overlap."""
        write_provider("google", provider_document)
        write_tokens("google", {"access_token": "A", "refresh_token": "R"})

        active = 0
        max_active = 0

        async def slow_exchange(config, refresh_token):
            nonlocal active, max_active
            active += 1
            max_active = max(max_active, active)
            await asyncio.sleep(0.01)
            active -= 1
            return TokenSet(access_token=f"B{max_active}")

        exchange_client = TokenExchangeClient()
        orchestrator = OAuth2Orchestrator(settings=settings, exchange_client=exchange_client)

        with patch.object(
            exchange_client, "exchange_refresh_token", side_effect=slow_exchange
        ):
            await asyncio.gather(
                orchestrator.refresh_token("google"),
                orchestrator.refresh_token("google"),
                orchestrator.refresh_token("google"),
            )

        assert max_active == 1

    async def test_different_providers_run_concurrently(
        self, settings, write_provider, write_tokens, provider_document
    ):
        """Test that flows for different providers may overlap."""
        for name in ("google", "github"):
            write_provider(name, provider_document)
            write_tokens(name, {"access_token": "A", "refresh_token": "R"})

        both_started = asyncio.Event()
        started = 0

        async def exchange(config, refresh_token):
            nonlocal started
            started += 1
            if started == 2:
                both_started.set()
            await asyncio.wait_for(both_started.wait(), timeout=1)
            return TokenSet(access_token="B")

        exchange_client = TokenExchangeClient()
        orchestrator = OAuth2Orchestrator(settings=settings, exchange_client=exchange_client)

        with patch.object(exchange_client, "exchange_refresh_token", side_effect=exchange):
            results = await asyncio.gather(
                orchestrator.refresh_token("google"),
                orchestrator.refresh_token("github"),
            )

        assert [r.access_token for r in results] == ["B", "B"]

    async def test_get_access_token_with_helper(
        self, settings, write_provider, provider_document, tokens_path
    ):
        write_provider("google", provider_document)
        orchestrator = OAuth2Orchestrator(settings=settings)
        helper = AsyncMock()

        with patch(
            "rest_client_oauth2.helper_process.HelperProtocolSession.run",
            new_callable=AsyncMock,
        ) as mock_run:
            mock_run.return_value = TokenSet(access_token="H", refresh_token="R")
            tokens = await orchestrator.get_access_token_with_helper("google", helper)

        mock_run.assert_awaited_once_with(provider_document)
        assert tokens.access_token == "H"
        assert json.loads(tokens_path("google").read_text()) == {
            "access_token": "H",
            "refresh_token": "R",
        }
        assert orchestrator.last_flow("google").state == FlowState.DONE

    async def test_helper_timeout_terminates_helper(
        self, workspace, write_provider, provider_document, tokens_path
    ):
        """Test that a helper that never answers is stopped and nothing is saved."""
        write_provider("google", provider_document)
        settings = OAuth2Settings(workspace=workspace, authorization_timeout=0.05)
        orchestrator = OAuth2Orchestrator(settings=settings)
        helper = FakeHelper(["ready"], hang=True)

        with pytest.raises(HelperProtocolError, match="did not finish"):
            await orchestrator.get_access_token_with_helper("google", helper)

        assert helper.terminated
        assert not tokens_path("google").exists()
        record = orchestrator.last_flow("google")
        assert record.state == FlowState.FAILED
        assert record.states[-2] == FlowState.ACQUIRING_CODE

    @pytest.mark.parametrize("missing", ["clientId", "tokenUrl"])
    async def test_get_access_token_incomplete_config_skips_browser(
        self, make_orchestrator, write_provider, provider_document, missing
    ):
        """Test that a config unusable for the exchange fails before the browser opens."""
        del provider_document["config"][missing]
        write_provider("google", provider_document)
        endpoint = TokenEndpoint()
        orchestrator, browser = make_orchestrator(endpoint)

        with pytest.raises(ConfigurationError, match=missing):
            await orchestrator.get_access_token("google")

        assert not browser.launched
        assert endpoint.requests == []
        assert orchestrator.last_flow("google").states == [
            FlowState.READING_CONFIG,
            FlowState.FAILED,
        ]

    async def test_refresh_incomplete_config_fails_before_reading_tokens(
        self, make_orchestrator, write_provider, write_tokens, provider_document
    ):
        del provider_document["config"]["tokenUrl"]
        write_provider("google", provider_document)
        path = write_tokens("google", {"access_token": "A", "refresh_token": "R"})
        before = path.read_bytes()
        endpoint = TokenEndpoint()
        orchestrator, _ = make_orchestrator(endpoint)

        with pytest.raises(ConfigurationError, match="tokenUrl"):
            await orchestrator.refresh_token("google")

        assert endpoint.requests == []
        assert path.read_bytes() == before
        assert orchestrator.last_flow("google").states[-2] == FlowState.READING_CONFIG
