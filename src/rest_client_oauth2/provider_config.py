# rest_client_oauth2/provider_config.py
"""Provider configuration and token set models."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .errors import ConfigurationError

OOB_REDIRECT_URI = "urn:ietf:wg:oauth:2.0:oob"


class ProviderConfig(BaseModel):
    """
    Client credentials and endpoints of one OAuth 2.0 provider.

    Accepts the camelCase keys used in provider files
    (``clientId``, ``tokenUrl``, ...) as well as the field names.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )

    client_id: str = ""
    client_secret: str = ""
    authorization_url: Optional[str] = None
    token_url: str = ""
    redirect_uri: Optional[str] = None
    use_basic_authorization_header: bool = False

    @property
    def resolved_redirect_uri(self) -> str:
        """Redirect URI, falling back to the out-of-band sentinel."""
        return self.redirect_uri or OOB_REDIRECT_URI

    def require_exchange_fields(self) -> None:
        """Raise ConfigurationError unless clientId and tokenUrl are set."""
        missing = [
            name
            for name, value in (("clientId", self.client_id), ("tokenUrl", self.token_url))
            if not value
        ]
        if missing:
            raise ConfigurationError(
                f"Provider configuration is missing required field(s): {', '.join(missing)}"
            )


class ProviderOptions(BaseModel):
    """Optional authorization parameters of a provider."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )

    scope: Optional[List[str]] = None
    access_type: Optional[str] = None
    additional_token_request_data: Dict[str, Any] = Field(default_factory=dict)


class ProviderDocument(BaseModel):
    """Contents of ``providers/<name>.json``."""

    config: ProviderConfig
    options: ProviderOptions = Field(default_factory=ProviderOptions)


class TokenSet(BaseModel):
    """
    Tokens returned by a provider.

    Fields other than ``access_token`` and ``refresh_token`` are provider
    defined and kept verbatim.
    """

    model_config = ConfigDict(extra="allow")

    access_token: str
    refresh_token: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize only the keys the provider actually sent."""
        data = self.model_dump()
        if "refresh_token" not in self.model_fields_set:
            data.pop("refresh_token", None)
        return data

    def with_access_token(self, access_token: str) -> "TokenSet":
        """Return a copy where only the access token differs."""
        return self.model_copy(update={"access_token": access_token})
