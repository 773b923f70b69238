"""REST Client OAuth2 - token acquisition and refresh for workspace providers.

This library obtains and refreshes OAuth 2.0 access tokens on behalf of an
HTTP client tool, implementing:
- Authorization Code grant with browser-based consent and redirect capture
- Refresh Token grant that keeps the stored refresh token
- Workspace-scoped provider configuration and token storage
- The legacy external helper process protocol
"""

from .authorization import AuthorizationCodeAcquirer, build_authorization_url, generate_state
from .browser import BrowserSession, PlaywrightBrowserSession, RedirectResult
from .credentials import BasicHeaderCredentials, BodyCredentials, CredentialTransmission
from .errors import (
    AuthorizationError,
    ConfigurationError,
    HelperProtocolError,
    OAuth2Error,
    ProviderNotFoundError,
    StorageError,
    TokenExchangeError,
    TokensNotFoundError,
    WorkspaceNotOpenError,
)
from .helper_process import HelperProcess, HelperProtocolSession, HelperState, SubprocessHelper
from .orchestrator import FlowRecord, FlowState, OAuth2Orchestrator
from .provider_config import (
    OOB_REDIRECT_URI,
    ProviderConfig,
    ProviderDocument,
    ProviderOptions,
    TokenSet,
)
from .settings import OAuth2Settings
from .token_exchange import TokenExchangeClient
from .token_store import InMemoryStore, JsonFileStore, KeyValueStore, WorkspaceTokenStore

__version__ = "0.1.0"

__all__ = [
    "AuthorizationCodeAcquirer",
    "build_authorization_url",
    "generate_state",
    "BrowserSession",
    "PlaywrightBrowserSession",
    "RedirectResult",
    "BasicHeaderCredentials",
    "BodyCredentials",
    "CredentialTransmission",
    "AuthorizationError",
    "ConfigurationError",
    "HelperProtocolError",
    "OAuth2Error",
    "ProviderNotFoundError",
    "StorageError",
    "TokenExchangeError",
    "TokensNotFoundError",
    "WorkspaceNotOpenError",
    "HelperProcess",
    "HelperProtocolSession",
    "HelperState",
    "SubprocessHelper",
    "FlowRecord",
    "FlowState",
    "OAuth2Orchestrator",
    "OOB_REDIRECT_URI",
    "ProviderConfig",
    "ProviderDocument",
    "ProviderOptions",
    "TokenSet",
    "OAuth2Settings",
    "TokenExchangeClient",
    "InMemoryStore",
    "JsonFileStore",
    "KeyValueStore",
    "WorkspaceTokenStore",
]
