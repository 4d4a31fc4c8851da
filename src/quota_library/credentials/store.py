# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Credential persistence.

``CredentialStore`` is the interface the usage manager talks to. The JSON
file store keeps every provider's record in a single owner-only file;
read failures degrade to "no record" rather than raising.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Union

from ..core.errors import mask_credential
from ..core.types import Credentials, ProviderID
from ..utils.paths import get_data_file

lib_logger = logging.getLogger("quota_library")

CREDENTIALS_FILENAME = "credentials.json"


class CredentialStore(ABC):
    """Keyed get/set/delete of a Credentials record per provider."""

    @abstractmethod
    def load(self, provider: ProviderID) -> Optional[Credentials]:
        """Stored record, or None when absent or unreadable."""

    @abstractmethod
    def save(self, provider: ProviderID, credentials: Credentials) -> None:
        pass

    @abstractmethod
    def delete(self, provider: ProviderID) -> None:
        pass


class InMemoryCredentialStore(CredentialStore):
    def __init__(self, records: Optional[Dict[ProviderID, Credentials]] = None):
        self._records: Dict[ProviderID, Credentials] = dict(records or {})

    def load(self, provider: ProviderID) -> Optional[Credentials]:
        return self._records.get(provider)

    def save(self, provider: ProviderID, credentials: Credentials) -> None:
        if credentials.is_empty():
            self.delete(provider)
            return
        self._records[provider] = credentials

    def delete(self, provider: ProviderID) -> None:
        self._records.pop(provider, None)


class JsonFileCredentialStore(CredentialStore):
    """
    All provider records in one JSON file, readable only by the owner.

    File layout::

        {"codex": {"accessToken": "...", "refreshToken": "...", ...}, ...}
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path is not None else get_data_file(CREDENTIALS_FILENAME)

    def _read_all(self) -> Dict[str, dict]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            lib_logger.warning(f"Failed to read credentials from {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            lib_logger.warning(f"Ignoring malformed credentials file {self.path}")
            return {}
        return data

    def _write_all(self, data: Dict[str, dict]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.path.with_suffix(".tmp")
        fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2)
        os.chmod(temp_path, 0o600)
        temp_path.replace(self.path)

    def load(self, provider: ProviderID) -> Optional[Credentials]:
        record = self._read_all().get(provider.value)
        if not isinstance(record, dict):
            return None
        credentials = Credentials.from_dict(record)
        return None if credentials.is_empty() else credentials

    def save(self, provider: ProviderID, credentials: Credentials) -> None:
        if credentials.is_empty():
            self.delete(provider)
            return
        data = self._read_all()
        data[provider.value] = {
            key: value for key, value in credentials.to_dict().items() if value
        }
        self._write_all(data)
        lib_logger.debug(
            f"Saved {provider.value} credentials "
            f"(access token {mask_credential(credentials.access_token)})"
        )

    def delete(self, provider: ProviderID) -> None:
        data = self._read_all()
        if data.pop(provider.value, None) is None:
            return
        self._write_all(data)
        lib_logger.debug(f"Deleted {provider.value} credentials")
