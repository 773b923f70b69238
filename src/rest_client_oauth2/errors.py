# rest_client_oauth2/errors.py
"""Exception types raised by the OAuth 2.0 token engine."""

from typing import Optional


class OAuth2Error(Exception):
    """Base class for every failure surfaced by the engine."""


class ConfigurationError(OAuth2Error):
    """Provider configuration is missing, unreadable or incomplete."""


class WorkspaceNotOpenError(ConfigurationError):
    """No workspace folder is open."""

    def __init__(self, message: str = "No workspace folder is open"):
        super().__init__(message)


class ProviderNotFoundError(ConfigurationError):
    """No configuration file exists for the provider."""

    def __init__(self, provider_name: str):
        super().__init__(f"No OAuth2 provider configuration found for '{provider_name}'")
        self.provider_name = provider_name


class AuthorizationError(OAuth2Error):
    """The authorization redirect carried an error or never arrived."""

    def __init__(self, error: str, error_description: Optional[str] = None):
        message = f"Authorization failed: {error}"
        if error_description:
            message = f"{message} ({error_description})"
        super().__init__(message)
        self.error = error
        self.error_description = error_description


class TokenExchangeError(OAuth2Error):
    """The token endpoint returned an error or could not be reached."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class StorageError(OAuth2Error):
    """Reading, parsing or writing a stored document failed."""


class TokensNotFoundError(StorageError):
    """No token file exists for the provider."""

    def __init__(self, provider_name: str):
        super().__init__(f"No stored tokens found for '{provider_name}'")
        self.provider_name = provider_name


class HelperProtocolError(OAuth2Error):
    """The external OAuth2 helper process violated its line protocol."""
