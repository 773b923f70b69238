# rest_client_oauth2/orchestrator.py
"""Token acquisition and refresh flows for named providers."""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from .authorization import AuthorizationCodeAcquirer
from .errors import HelperProtocolError, StorageError
from .helper_process import HelperProcess, HelperProtocolSession
from .provider_config import TokenSet
from .settings import OAuth2Settings
from .token_exchange import TokenExchangeClient
from .token_store import WorkspaceTokenStore

logger = logging.getLogger(__name__)


class FlowState(str, Enum):
    READING_CONFIG = "reading_config"
    READING_TOKENS = "reading_tokens"
    ACQUIRING_CODE = "acquiring_code"
    EXCHANGING = "exchanging"
    MERGING = "merging"
    PERSISTING_TOKENS = "persisting_tokens"
    DONE = "done"
    FAILED = "failed"


@dataclass
class FlowRecord:
    """States one flow invocation went through."""

    provider_name: str
    operation: str
    states: List[FlowState] = field(default_factory=list)
    error: Optional[BaseException] = None

    @property
    def state(self) -> Optional[FlowState]:
        return self.states[-1] if self.states else None

    def enter(self, state: FlowState) -> None:
        self.states.append(state)
        logger.debug(f"{self.operation}[{self.provider_name}] -> {state.value}")


class OAuth2Orchestrator:
    """Composes the store, the acquirer and the exchange client."""

    def __init__(
        self,
        store: Optional[WorkspaceTokenStore] = None,
        acquirer: Optional[AuthorizationCodeAcquirer] = None,
        exchange_client: Optional[TokenExchangeClient] = None,
        settings: Optional[OAuth2Settings] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            store: Configuration and token store (built from settings if not provided)
            acquirer: Authorization code acquirer (built from settings if not provided)
            exchange_client: Token endpoint client (built from settings if not provided)
            settings: Settings used for any collaborator not given explicitly
        """
        self.settings = settings or OAuth2Settings.from_env()
        self.store = store or WorkspaceTokenStore(self.settings)
        self.acquirer = acquirer or AuthorizationCodeAcquirer(self.settings)
        self.exchange_client = exchange_client or TokenExchangeClient(
            timeout=self.settings.exchange_timeout
        )
        self._provider_locks: Dict[str, asyncio.Lock] = {}
        self._locks_lock = asyncio.Lock()
        self._last_flows: Dict[str, FlowRecord] = {}

    async def _get_lock(self, provider_name: str) -> asyncio.Lock:
        async with self._locks_lock:
            if provider_name not in self._provider_locks:
                self._provider_locks[provider_name] = asyncio.Lock()
            return self._provider_locks[provider_name]

    def last_flow(self, provider_name: str) -> Optional[FlowRecord]:
        """Record of the most recent flow run for a provider."""
        return self._last_flows.get(provider_name)

    def _start_flow(self, provider_name: str, operation: str) -> FlowRecord:
        record = FlowRecord(provider_name=provider_name, operation=operation)
        self._last_flows[provider_name] = record
        return record

    def _fail(self, record: FlowRecord, error: BaseException) -> None:
        failed_in = record.state.value if record.state else "start"
        record.error = error
        record.enter(FlowState.FAILED)
        logger.error(
            f"{record.operation} failed for {record.provider_name} "
            f"while {failed_in}: {error}"
        )

    async def get_access_token(self, provider_name: str) -> TokenSet:
        """
        Run the full authorization code flow and persist the tokens.

        Args:
            provider_name: Name of the configured provider

        Returns:
            The persisted token set

        Raises:
            OAuth2Error: Any failure; nothing is persisted in that case
        """
        lock = await self._get_lock(provider_name)
        async with lock:
            record = self._start_flow(provider_name, "get_access_token")
            try:
                record.enter(FlowState.READING_CONFIG)
                document = self.store.read_config(provider_name)
                document.config.require_exchange_fields()

                logger.info(f"🔐 Authorization required for {provider_name}")
                record.enter(FlowState.ACQUIRING_CODE)
                code = await self.acquirer.acquire_code(document.config, document.options)

                record.enter(FlowState.EXCHANGING)
                tokens = await self.exchange_client.exchange_authorization_code(
                    document.config, document.options, code
                )

                record.enter(FlowState.PERSISTING_TOKENS)
                self.store.save_tokens(provider_name, tokens)
            except BaseException as e:
                self._fail(record, e)
                raise

            record.enter(FlowState.DONE)
            logger.info(f"✅ Obtained access token for {provider_name}")
            return tokens

    async def refresh_token(self, provider_name: str) -> TokenSet:
        """
        Exchange the stored refresh token for a new access token.

        Only ``access_token`` of the stored token set is replaced; the
        refresh token and any provider-specific fields are kept even when
        the token endpoint omits them.

        Args:
            provider_name: Name of the configured provider

        Returns:
            The persisted, merged token set

        Raises:
            OAuth2Error: Any failure; the stored token file is left unchanged
        """
        lock = await self._get_lock(provider_name)
        async with lock:
            record = self._start_flow(provider_name, "refresh_token")
            try:
                record.enter(FlowState.READING_CONFIG)
                document = self.store.read_config(provider_name)
                document.config.require_exchange_fields()

                record.enter(FlowState.READING_TOKENS)
                stored = self.store.read_tokens(provider_name)
                if not stored.refresh_token:
                    raise StorageError(
                        f"Stored tokens for '{provider_name}' have no refresh_token"
                    )

                record.enter(FlowState.EXCHANGING)
                response = await self.exchange_client.exchange_refresh_token(
                    document.config, stored.refresh_token
                )

                record.enter(FlowState.MERGING)
                merged = stored.with_access_token(response.access_token)

                record.enter(FlowState.PERSISTING_TOKENS)
                self.store.save_tokens(provider_name, merged)
            except BaseException as e:
                self._fail(record, e)
                raise

            record.enter(FlowState.DONE)
            logger.info(f"Refreshed access token for {provider_name}")
            return merged

    async def get_access_token_with_helper(
        self, provider_name: str, helper: HelperProcess
    ) -> TokenSet:
        """
        Obtain tokens through an external OAuth2 helper process.

        Args:
            provider_name: Name of the configured provider
            helper: Process speaking the ready/config/tokens line protocol

        Returns:
            The persisted token set

        Raises:
            HelperProtocolError: If the helper misbehaves or does not finish
                                 within ``settings.authorization_timeout``
        """
        lock = await self._get_lock(provider_name)
        async with lock:
            record = self._start_flow(provider_name, "get_access_token_with_helper")
            try:
                record.enter(FlowState.READING_CONFIG)
                # Validated first, then handed to the helper exactly as stored
                self.store.read_config(provider_name)
                document = self.store.read_config_data(provider_name)

                record.enter(FlowState.ACQUIRING_CODE)
                session = HelperProtocolSession(helper)
                timeout = self.settings.authorization_timeout
                try:
                    tokens = await asyncio.wait_for(session.run(document), timeout=timeout)
                except asyncio.TimeoutError:
                    raise HelperProtocolError(
                        f"Helper did not finish within {timeout:g}s"
                    ) from None

                record.enter(FlowState.PERSISTING_TOKENS)
                self.store.save_tokens(provider_name, tokens)
            except BaseException as e:
                self._fail(record, e)
                raise

            record.enter(FlowState.DONE)
            logger.info(f"✅ Obtained access token for {provider_name} via helper")
            return tokens
