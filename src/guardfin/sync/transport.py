"""
Sync transports -- how a ciphertext bundle reaches the remote store.

Each transport knows how to push a full snapshot and fetch the latest
one. The engine does not care which it talks to.

HTTP: the ``guardfin serve`` API over requests, with a hard timeout so
      a hung server still ends up reported as offline.
Local: an in-process RemoteStore. For tests and single-machine setups.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

import requests

from ..config import ClientConfig, TransportType
from ..errors import (
    PayloadTooLargeError,
    RateLimitedError,
    RemoteRejectedError,
    TransportError,
    ValidationError,
)

if TYPE_CHECKING:
    from ..remote import RemoteStore

logger = logging.getLogger("guardfin.sync.transport")


class SyncTransport(ABC):
    """Abstract sync transport."""

    @abstractmethod
    def push(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Send a full-state sync payload.

        Args:
            payload: Body of ``POST /sync``.

        Returns:
            Server receipt, ``{"syncCount": int, "timestamp": str}``.

        Raises:
            TransportError: The store could not be reached.
            RemoteRejectedError: The store refused the payload.
        """

    @abstractmethod
    def fetch(self, account_id: str) -> dict[str, Any]:
        """Fetch the stored bundle (or empty defaults) for an account."""

    @abstractmethod
    def delete(self, account_id: str, confirmation: str) -> dict[str, Any]:
        """Wipe the stored bundle. ``confirmation`` must be DELETE_ALL_DATA."""

    @abstractmethod
    def available(self) -> bool:
        """Check if the remote store is currently reachable."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable transport name."""


class HttpTransport(SyncTransport):
    """Talks to a guardfin sync server over HTTP.

    Args:
        base_url: Server root, e.g. ``http://localhost:3001``.
        timeout: Seconds before a request is abandoned.
        session: Optional requests session (connection reuse, tests).
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http = session or requests.Session()

    @property
    def name(self) -> str:
        return "http"

    def push(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self._request("POST", "/api/sync", json=payload)

    def fetch(self, account_id: str) -> dict[str, Any]:
        return self._request("GET", f"/api/data/{account_id}")

    def delete(self, account_id: str, confirmation: str) -> dict[str, Any]:
        return self._request(
            "DELETE",
            f"/api/data/{account_id}",
            json={"confirmDelete": confirmation},
        )

    def available(self) -> bool:
        try:
            self._request("GET", "/api/health")
            return True
        except (TransportError, RemoteRejectedError):
            return False

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            resp = self._http.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise TransportError(str(exc)) from exc

        try:
            body = resp.json()
        except ValueError:
            body = {}

        if not resp.ok:
            message = body.get("error", resp.reason) if isinstance(body, dict) else resp.reason
            logger.warning("%s %s rejected: %d %s", method, path, resp.status_code, message)
            raise RemoteRejectedError(resp.status_code, str(message))
        if not isinstance(body, dict):
            raise RemoteRejectedError(resp.status_code, "Unexpected response body")
        return body


class LocalTransport(SyncTransport):
    """Writes straight into an in-process RemoteStore."""

    def __init__(self, remote: "RemoteStore", client_address: str = "local") -> None:
        self.remote = remote
        self.client_address = client_address

    @property
    def name(self) -> str:
        return "local"

    def push(self, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            account_id = payload.get("accountId")
            self.remote.admit(account_id, self.client_address)
            receipt = self.remote.put(account_id, payload)
        except PayloadTooLargeError as exc:
            raise RemoteRejectedError(413, str(exc)) from exc
        except ValidationError as exc:
            raise RemoteRejectedError(400, str(exc)) from exc
        except RateLimitedError as exc:
            raise RemoteRejectedError(429, str(exc)) from exc
        except OSError as exc:
            raise TransportError(str(exc)) from exc
        return receipt.to_wire()

    def fetch(self, account_id: str) -> dict[str, Any]:
        try:
            return self.remote.get(account_id).to_wire()
        except ValidationError as exc:
            raise RemoteRejectedError(400, str(exc)) from exc

    def delete(self, account_id: str, confirmation: str) -> dict[str, Any]:
        try:
            self.remote.admit(account_id, self.client_address)
            existed = self.remote.delete(account_id, confirmation)
        except ValidationError as exc:
            raise RemoteRejectedError(400, str(exc)) from exc
        except RateLimitedError as exc:
            raise RemoteRejectedError(429, str(exc)) from exc
        return {"message": "Account data deleted successfully", "existed": existed}

    def available(self) -> bool:
        return self.remote.data_dir.is_dir()


def create_transport(config: ClientConfig, home: Optional[Path] = None) -> SyncTransport:
    """Factory: build the transport named in the client config.

    Args:
        config: Client configuration.
        home: Guardfin home; the local transport defaults to
            ``<home>/remote`` when no ``local_data_dir`` is configured.

    Returns:
        A ready SyncTransport.
    """
    if config.transport == TransportType.LOCAL:
        from ..remote import RemoteStore

        data_dir = config.local_data_dir or ((home or Path.cwd()) / "remote")
        return LocalTransport(RemoteStore(Path(data_dir).expanduser()))

    return HttpTransport(config.server_url, timeout=config.request_timeout)
