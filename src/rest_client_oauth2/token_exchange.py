# rest_client_oauth2/token_exchange.py
"""Token endpoint requests for the authorization_code and refresh_token grants."""

import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from .credentials import CredentialTransmission
from .errors import TokenExchangeError
from .provider_config import ProviderConfig, ProviderOptions, TokenSet

logger = logging.getLogger(__name__)


class TokenExchangeClient:
    """Performs form-encoded POSTs against a provider's token endpoint."""

    def __init__(
        self,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            timeout: Request timeout in seconds
            transport: Optional httpx transport (e.g. httpx.MockTransport)
        """
        self.timeout = timeout
        self.transport = transport

    async def exchange(self, config: ProviderConfig, data: Dict[str, Any]) -> TokenSet:
        """
        POST ``data`` to the token endpoint and parse the JSON response.

        Args:
            config: Provider configuration
            data: Grant-specific form fields

        Returns:
            Parsed token response

        Raises:
            ConfigurationError: If clientId or tokenUrl is missing
            TokenExchangeError: On transport failure, non-success status or
                                a response without an access token
        """
        config.require_exchange_fields()

        headers = {
            "Accept": "application/json",
            "Content-Type": "application/x-www-form-urlencoded",
        }
        form = dict(data)
        CredentialTransmission.for_config(config).apply(headers, form)

        grant_type = form.get("grant_type", "unknown")
        logger.debug(f"Requesting {grant_type} grant from {config.token_url}")

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.post(config.token_url, headers=headers, data=form)
        except httpx.HTTPError as e:
            raise TokenExchangeError(f"Token request to {config.token_url} failed: {e}") from e

        if not response.is_success:
            raise TokenExchangeError(
                f"Token endpoint returned HTTP {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise TokenExchangeError(
                "Token endpoint returned a non-JSON response",
                status_code=response.status_code,
                body=response.text,
            ) from e

        if not isinstance(payload, dict):
            raise TokenExchangeError(
                "Token endpoint returned a non-object JSON response",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            return TokenSet.model_validate(payload)
        except ValidationError as e:
            raise TokenExchangeError(
                "Token response does not contain an access_token",
                status_code=response.status_code,
                body=response.text,
            ) from e

    async def exchange_authorization_code(
        self, config: ProviderConfig, options: ProviderOptions, code: str
    ) -> TokenSet:
        """Exchange an authorization code for a token set."""
        data: Dict[str, Any] = {
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": config.resolved_redirect_uri,
        }
        data.update(options.additional_token_request_data)
        return await self.exchange(config, data)

    async def exchange_refresh_token(
        self, config: ProviderConfig, refresh_token: str
    ) -> TokenSet:
        """Exchange a refresh token for a new access token."""
        return await self.exchange(
            config,
            {
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
                "redirect_uri": config.resolved_redirect_uri,
            },
        )
