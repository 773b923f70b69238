# rest_client_oauth2/credentials.py
"""How client credentials travel to the token endpoint."""

import base64
from abc import ABC, abstractmethod
from typing import Any, Dict

from .provider_config import ProviderConfig


class CredentialTransmission(ABC):
    """A way of sending clientId/clientSecret with a token request."""

    def __init__(self, client_id: str, client_secret: str):
        self.client_id = client_id
        self.client_secret = client_secret

    @abstractmethod
    def apply(self, headers: Dict[str, str], data: Dict[str, Any]) -> None:
        """Add the credentials to the request headers or form data in place."""

    @staticmethod
    def for_config(config: ProviderConfig) -> "CredentialTransmission":
        """Pick the transmission mode selected by the provider configuration."""
        if config.use_basic_authorization_header:
            return BasicHeaderCredentials(config.client_id, config.client_secret)
        return BodyCredentials(config.client_id, config.client_secret)


class BasicHeaderCredentials(CredentialTransmission):
    """HTTP Basic ``Authorization`` header; the form body is left untouched."""

    def apply(self, headers: Dict[str, str], data: Dict[str, Any]) -> None:
        raw = f"{self.client_id}:{self.client_secret}".encode("utf-8")
        headers["Authorization"] = "Basic " + base64.b64encode(raw).decode("ascii")


class BodyCredentials(CredentialTransmission):
    """``client_id`` and ``client_secret`` appended to the form body."""

    def apply(self, headers: Dict[str, str], data: Dict[str, Any]) -> None:
        data["client_id"] = self.client_id
        data["client_secret"] = self.client_secret
