"""
Account client contract and its HTTP implementation.

``VaultClient`` is the seam between the engine and a tenant. Production code
uses ``HttpVaultClient``; tests plug in an in-memory tenant.
"""

import base64
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

import httpx

from logconfig.logger import get_logger
from vault_migration.core.settings import Settings, get_settings
from vault_migration.exceptions.migration_exceptions import AuthError, VaultApiError
from vault_migration.models.item import Item, ItemCreateParams, ItemSummary, Vault

logger = get_logger()


class VaultClient(ABC):
    """Abstract base class for a single-tenant account client."""

    @abstractmethod
    async def verify(self) -> None:
        """Check that the token is accepted. Raises AuthError otherwise."""

    @abstractmethod
    async def list_vaults(self) -> List[Vault]:
        """List vaults in tenant order."""

    @abstractmethod
    async def list_items(self, vault_id: str, archived: bool = False) -> List[ItemSummary]:
        """List active (or archived) item summaries of a vault."""

    @abstractmethod
    async def get_item(self, vault_id: str, item_id: str) -> Item:
        """Read a full item. File and document payloads are not included."""

    @abstractmethod
    async def read_file(self, vault_id: str, item_id: str, file_id: str) -> bytes:
        """Read the raw content of an attachment or document."""

    @abstractmethod
    async def create_vault(self, name: str) -> Vault:
        """Create a vault."""

    @abstractmethod
    async def create_item(self, params: ItemCreateParams) -> Item:
        """Create an item in ``params.vault_id``."""

    async def close(self) -> None:
        """Release the underlying connection, if any."""


ClientFactory = Callable[[str], VaultClient]


class HttpVaultClient(VaultClient):
    """
    Bearer-token REST client for one tenant.

    Failed responses are translated by ``_handle_api_error``; network errors
    become retryable ``VaultApiError`` instances.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 30.0,
        integration_name: str = "Vault Migration Tool",
        integration_version: str = "2.0.0",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.http_client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
                "User-Agent": f"{integration_name}/{integration_version}",
            },
        )

    @classmethod
    def factory(
        cls,
        base_url: str,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> ClientFactory:
        """Build a token -> client factory bound to one tenant URL."""
        settings = settings or get_settings()

        def _create(token: str) -> VaultClient:
            return cls(
                base_url,
                token,
                timeout=settings.API_TIMEOUT_SECONDS,
                integration_name=settings.INTEGRATION_NAME,
                integration_version=settings.INTEGRATION_VERSION,
                transport=transport,
            )

        return _create

    async def verify(self) -> None:
        await self._request("GET", "/v1/vaults", "verify token")

    async def list_vaults(self) -> List[Vault]:
        response = await self._request("GET", "/v1/vaults", "list vaults")
        return [Vault.model_validate(v) for v in self._unwrap_list(response.json())]

    async def list_items(self, vault_id: str, archived: bool = False) -> List[ItemSummary]:
        state = "archived" if archived else "active"
        response = await self._request(
            "GET",
            f"/v1/vaults/{vault_id}/items",
            f"list {state} items in vault {vault_id}",
            params={"state": state},
        )
        return [ItemSummary.model_validate(i) for i in self._unwrap_list(response.json())]

    async def get_item(self, vault_id: str, item_id: str) -> Item:
        response = await self._request(
            "GET", f"/v1/vaults/{vault_id}/items/{item_id}", f"get item {item_id}"
        )
        data = response.json()
        data.setdefault("vaultId", vault_id)
        return Item.model_validate(data)

    async def read_file(self, vault_id: str, item_id: str, file_id: str) -> bytes:
        response = await self._request(
            "GET",
            f"/v1/vaults/{vault_id}/items/{item_id}/files/{file_id}/content",
            f"read file {file_id} of item {item_id}",
        )
        return response.content

    async def create_vault(self, name: str) -> Vault:
        response = await self._request(
            "POST", "/v1/vaults", f"create vault '{name}'", json={"name": name}
        )
        return Vault.model_validate(response.json())

    async def create_item(self, params: ItemCreateParams) -> Item:
        response = await self._request(
            "POST",
            f"/v1/vaults/{params.vault_id}/items",
            f"create item '{params.title}'",
            json=self._item_payload(params),
        )
        data = response.json()
        data.setdefault("vaultId", params.vault_id)
        return Item.model_validate(data)

    async def close(self) -> None:
        await self.http_client.aclose()

    @staticmethod
    def _item_payload(params: ItemCreateParams) -> Dict[str, Any]:
        """JSON body for item creation; binary payloads are base64 encoded."""
        payload = params.model_dump(
            mode="json",
            by_alias=True,
            exclude_none=True,
            exclude={"files": {"__all__": {"content"}}, "document": {"content"}},
        )
        for file_payload, file_params in zip(payload.get("files", []), params.files):
            file_payload["content"] = base64.b64encode(file_params.content).decode("ascii")
        if params.document is not None:
            payload["document"]["content"] = base64.b64encode(params.document.content).decode("ascii")
        return payload

    @staticmethod
    def _unwrap_list(data: Any) -> List[Any]:
        # Accept both a bare list and {"items": [...]} / {"vaults": [...]}
        if isinstance(data, dict):
            for key in ("items", "vaults", "data"):
                if isinstance(data.get(key), list):
                    return data[key]
            return []
        return data or []

    async def _request(
        self,
        method: str,
        url: str,
        operation: str,
        **kwargs,
    ) -> httpx.Response:
        try:
            response = await self.http_client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            logger.warning(f"Network error for {operation}: {e}")
            raise VaultApiError(
                f"Network error for {operation}: {e}",
                retryable=True,
                original_exception=e,
            )

        if response.status_code >= 400:
            self._handle_api_error(response, operation)
        return response

    def _handle_api_error(self, response: httpx.Response, operation: str) -> None:
        """
        Translate a failed response into an engine error.

        Args:
            response: HTTP response object
            operation: Description of the operation that failed

        Raises:
            AuthError: On 401/403
            VaultApiError: For everything else, retryable for 409, 429 and 5xx
        """
        try:
            error_data = response.json() if response.content else {}
        except ValueError:
            error_data = {}
        if not isinstance(error_data, dict):
            error_data = {}

        status = response.status_code
        error_message = error_data.get("message") or f"HTTP {status}"

        if status in (401, 403):
            raise AuthError(
                f"Access denied for {operation}: {error_message}",
                status_code=status,
            )
        if status == 404:
            raise VaultApiError(
                f"Resource not found for {operation}: {error_message}",
                status_code=status,
            )
        if status == 429:
            retry_after = response.headers.get("Retry-After")
            if retry_after:
                logger.debug(f"Rate limit for {operation}, Retry-After: {retry_after}")
            raise VaultApiError(
                f"Rate limit exceeded for {operation}: {error_message}",
                status_code=status,
                retryable=True,
            )
        if status == 409:
            raise VaultApiError(
                f"Data conflict for {operation}: {error_message}",
                status_code=status,
                retryable=True,
            )
        if status in (400, 422):
            errors = error_data.get("errors") or []
            if errors:
                error_message = "; ".join(
                    err.get("message", str(err)) if isinstance(err, dict) else str(err)
                    for err in errors
                )
            raise VaultApiError(
                f"Validation error for {operation}: {error_message}",
                status_code=status,
            )
        if status >= 500:
            raise VaultApiError(
                f"Server error for {operation}: {error_message}",
                status_code=status,
                retryable=True,
            )
        raise VaultApiError(
            f"API error for {operation}: {error_message}",
            status_code=status,
        )
