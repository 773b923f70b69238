# rest_client_oauth2/token_store.py
"""Provider configuration and token storage."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from pydantic import ValidationError

from .errors import (
    ConfigurationError,
    ProviderNotFoundError,
    StorageError,
    TokensNotFoundError,
)
from .provider_config import ProviderDocument, TokenSet
from .settings import OAuth2Settings

logger = logging.getLogger(__name__)

OAUTH2_DIR = Path(".rest-client") / "oauth2"
PROVIDERS_DIR = "providers"
TOKENS_DIR = "tokens"


@runtime_checkable
class KeyValueStore(Protocol):
    """Persistence of JSON objects keyed by name."""

    def read(self, key: str) -> Dict[str, Any]:
        """Return the stored object; raise KeyError if absent."""
        ...

    def write(self, key: str, value: Dict[str, Any]) -> None:
        """Replace the stored object wholesale."""
        ...

    def exists(self, key: str) -> bool: ...

    def keys(self) -> List[str]: ...


class JsonFileStore:
    """One pretty-printed ``<key>.json`` file per key inside a directory."""

    def __init__(self, directory: Path):
        self.directory = directory

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def read(self, key: str) -> Dict[str, Any]:
        path = self._path(key)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            raise KeyError(key) from None
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise StorageError(f"Invalid JSON in {path}: {e}") from e
        except OSError as e:
            raise StorageError(f"Failed to read {path}: {e}") from e

        if not isinstance(data, dict):
            raise StorageError(f"Expected a JSON object in {path}")
        return data

    def write(self, key: str, value: Dict[str, Any]) -> None:
        """Write atomically so a failure never leaves a half-written file."""
        path = self._path(key)
        tmp_name = None
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.directory, prefix=f".{key}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(value, f, indent=2)
            # Set file permissions to user-only read/write
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, path)
        except (OSError, TypeError, ValueError) as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise StorageError(f"Failed to write {path}: {e}") from e

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def keys(self) -> List[str]:
        if not self.directory.is_dir():
            return []
        return sorted(p.stem for p in self.directory.glob("*.json"))


class InMemoryStore:
    """Dictionary-backed store."""

    def __init__(self, initial: Optional[Dict[str, Dict[str, Any]]] = None):
        self._data: Dict[str, Dict[str, Any]] = {
            k: json.loads(json.dumps(v)) for k, v in (initial or {}).items()
        }

    def read(self, key: str) -> Dict[str, Any]:
        if key not in self._data:
            raise KeyError(key)
        return json.loads(json.dumps(self._data[key]))

    def write(self, key: str, value: Dict[str, Any]) -> None:
        self._data[key] = json.loads(json.dumps(value))

    def exists(self, key: str) -> bool:
        return key in self._data

    def keys(self) -> List[str]:
        return sorted(self._data)


class WorkspaceTokenStore:
    """Reads provider configurations and reads/writes token sets."""

    def __init__(
        self,
        settings: Optional[OAuth2Settings] = None,
        config_store: Optional[KeyValueStore] = None,
        token_store: Optional[KeyValueStore] = None,
    ):
        """
        Initialize the store.

        Args:
            settings: Settings carrying the workspace folder; used to build
                      file stores under ``<workspace>/.rest-client/oauth2``
                      when explicit stores are not given
            config_store: Store holding provider documents
            token_store: Store holding token sets
        """
        self.settings = settings or OAuth2Settings()
        self._config_store = config_store
        self._token_store = token_store

    @property
    def oauth2_dir(self) -> Path:
        return self.settings.require_workspace() / OAUTH2_DIR

    @property
    def config_store(self) -> KeyValueStore:
        if self._config_store is None:
            return JsonFileStore(self.oauth2_dir / PROVIDERS_DIR)
        return self._config_store

    @property
    def token_store(self) -> KeyValueStore:
        if self._token_store is None:
            return JsonFileStore(self.oauth2_dir / TOKENS_DIR)
        return self._token_store

    def _check_name(self, provider_name: str) -> str:
        """Reject names that would escape the storage directory."""
        if (
            not provider_name
            or provider_name.startswith(".")
            or "/" in provider_name
            or "\\" in provider_name
            or "\x00" in provider_name
        ):
            raise ConfigurationError(f"Invalid provider name: {provider_name!r}")
        return provider_name

    def read_config_data(self, provider_name: str) -> Dict[str, Any]:
        """
        Read the configuration document of a provider as stored, unvalidated.

        Raises:
            WorkspaceNotOpenError: If no workspace is open
            ProviderNotFoundError: If no configuration file exists
            ConfigurationError: If the file is not a JSON object
        """
        key = self._check_name(provider_name)
        try:
            return self.config_store.read(key)
        except KeyError:
            raise ProviderNotFoundError(provider_name) from None
        except StorageError as e:
            raise ConfigurationError(
                f"Unreadable configuration for '{provider_name}': {e}"
            ) from e

    def read_config(self, provider_name: str) -> ProviderDocument:
        """
        Read the configuration document of a provider.

        Raises:
            WorkspaceNotOpenError: If no workspace is open
            ProviderNotFoundError: If no configuration file exists
            ConfigurationError: If the document cannot be parsed
        """
        data = self.read_config_data(provider_name)
        try:
            return ProviderDocument.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid configuration for '{provider_name}': {e}"
            ) from e

    def read_tokens(self, provider_name: str) -> TokenSet:
        """
        Read the stored token set of a provider.

        Raises:
            WorkspaceNotOpenError: If no workspace is open
            TokensNotFoundError: If no token file exists
            StorageError: If the token file cannot be parsed
        """
        key = self._check_name(provider_name)
        try:
            data = self.token_store.read(key)
        except KeyError:
            raise TokensNotFoundError(provider_name) from None

        try:
            return TokenSet.model_validate(data)
        except ValidationError as e:
            raise StorageError(f"Invalid token file for '{provider_name}': {e}") from e

    def save_tokens(self, provider_name: str, tokens: TokenSet) -> None:
        """Replace the stored token set of a provider."""
        key = self._check_name(provider_name)
        self.token_store.write(key, tokens.to_dict())
        logger.debug(f"Saved tokens for {provider_name}")

    def has_tokens(self, provider_name: str) -> bool:
        return self.token_store.exists(self._check_name(provider_name))

    def list_providers(self) -> List[str]:
        """Names of all providers that have a configuration document."""
        return self.config_store.keys()
