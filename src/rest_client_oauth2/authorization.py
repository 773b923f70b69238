# rest_client_oauth2/authorization.py
"""Authorization code acquisition through a driven browser session."""

import asyncio
import logging
import secrets
import string
from typing import Callable, Optional
from urllib.parse import urlencode, urlparse

from .browser import BrowserSession, PlaywrightBrowserSession
from .errors import AuthorizationError, ConfigurationError
from .provider_config import ProviderConfig, ProviderOptions
from .settings import OAuth2Settings

logger = logging.getLogger(__name__)

STATE_ALPHABET = string.ascii_letters + string.digits
STATE_LENGTH = 16


def generate_state(length: int = STATE_LENGTH) -> str:
    """Random alphanumeric value that makes each authorization request unique."""
    return "".join(secrets.choice(STATE_ALPHABET) for _ in range(length))


def build_authorization_url(
    config: ProviderConfig, options: ProviderOptions, state: str
) -> str:
    """Append the authorization request parameters to the provider's URL."""
    if not config.authorization_url:
        raise ConfigurationError(
            "Provider configuration is missing required field(s): authorizationUrl"
        )

    params = {
        "response_type": "code",
        "redirect_uri": config.resolved_redirect_uri,
        "client_id": config.client_id,
        "state": state,
    }
    if options.scope:
        params["scope"] = " ".join(options.scope)
    if options.access_type:
        params["access_type"] = options.access_type

    separator = "&" if "?" in config.authorization_url else "?"
    return config.authorization_url + separator + urlencode(params)


class AuthorizationCodeAcquirer:
    """Obtains an authorization code from the user's interactive consent."""

    def __init__(
        self,
        settings: Optional[OAuth2Settings] = None,
        browser_factory: Optional[Callable[[], BrowserSession]] = None,
    ):
        """
        Initialize the acquirer.

        Args:
            settings: Redirect host, timeout and browser settings
            browser_factory: Builds a fresh browser session per acquisition
                             (default: Playwright Chromium)
        """
        self.settings = settings or OAuth2Settings()
        self.browser_factory = browser_factory or self._default_browser

    def _default_browser(self) -> BrowserSession:
        return PlaywrightBrowserSession(
            executable_path=self.settings.browser_executable,
            headless=self.settings.headless,
        )

    async def acquire_code(
        self, config: ProviderConfig, options: Optional[ProviderOptions] = None
    ) -> str:
        """
        Run the browser-based consent and return the authorization code.

        The redirect URI must point at ``settings.redirect_host``; any other
        redirect is never intercepted and the call ends by timeout or when
        the user closes the window.

        Raises:
            ConfigurationError: If authorizationUrl is missing
            AuthorizationError: If the provider reported an error, the window
                                was closed, or the timeout elapsed
        """
        options = options or ProviderOptions()
        url = build_authorization_url(config, options, generate_state())

        redirect_host = urlparse(config.resolved_redirect_uri).hostname
        if redirect_host != self.settings.redirect_host:
            logger.warning(
                f"Redirect URI {config.resolved_redirect_uri} does not point at "
                f"{self.settings.redirect_host}; the redirect cannot be captured"
            )

        session = self.browser_factory()
        try:
            await session.launch()
            result = await asyncio.wait_for(
                session.navigate_and_intercept_redirect(url, self.settings.redirect_host),
                timeout=self.settings.authorization_timeout,
            )
        except asyncio.TimeoutError as e:
            raise AuthorizationError(
                "timeout",
                f"No redirect within {self.settings.authorization_timeout:g} seconds",
            ) from e
        finally:
            await session.close()

        if result.error:
            raise AuthorizationError(result.error, result.error_description)
        if not result.code:
            raise AuthorizationError(
                "missing_code", "The redirect did not carry an authorization code"
            )

        logger.info("Received authorization code")
        return result.code
