# rest_client_oauth2/settings.py
"""Runtime settings for the token engine."""

import os
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, Field

from .errors import WorkspaceNotOpenError

ENV_WORKSPACE = "REST_CLIENT_WORKSPACE"
ENV_BROWSER = "REST_CLIENT_OAUTH2_BROWSER"
ENV_HEADLESS = "REST_CLIENT_OAUTH2_HEADLESS"
ENV_REDIRECT_HOST = "REST_CLIENT_OAUTH2_REDIRECT_HOST"
ENV_AUTH_TIMEOUT = "REST_CLIENT_OAUTH2_AUTH_TIMEOUT"
ENV_EXCHANGE_TIMEOUT = "REST_CLIENT_OAUTH2_EXCHANGE_TIMEOUT"

_TRUE_VALUES = {"1", "true", "yes", "on"}


class OAuth2Settings(BaseModel):
    """Settings shared by the acquirer, the exchange client and the store."""

    workspace: Optional[Path] = None
    browser_executable: Optional[str] = None
    headless: bool = False
    redirect_host: str = "localhost"
    authorization_timeout: float = Field(default=120.0, gt=0)
    exchange_timeout: float = Field(default=30.0, gt=0)

    @classmethod
    def from_env(
        cls, environ: Optional[Mapping[str, str]] = None, **overrides
    ) -> "OAuth2Settings":
        """
        Build settings from environment variables.

        Args:
            environ: Mapping to read from (default: os.environ)
            **overrides: Explicit values that win over the environment;
                         None values are ignored

        Returns:
            Settings instance
        """
        env = os.environ if environ is None else environ
        values: dict = {}

        if env.get(ENV_WORKSPACE):
            values["workspace"] = Path(env[ENV_WORKSPACE])
        if env.get(ENV_BROWSER):
            values["browser_executable"] = env[ENV_BROWSER]
        if env.get(ENV_HEADLESS):
            values["headless"] = env[ENV_HEADLESS].strip().lower() in _TRUE_VALUES
        if env.get(ENV_REDIRECT_HOST):
            values["redirect_host"] = env[ENV_REDIRECT_HOST]
        if env.get(ENV_AUTH_TIMEOUT):
            values["authorization_timeout"] = float(env[ENV_AUTH_TIMEOUT])
        if env.get(ENV_EXCHANGE_TIMEOUT):
            values["exchange_timeout"] = float(env[ENV_EXCHANGE_TIMEOUT])

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def require_workspace(self) -> Path:
        """Return the active workspace or raise WorkspaceNotOpenError."""
        if self.workspace is None:
            raise WorkspaceNotOpenError()
        return self.workspace
