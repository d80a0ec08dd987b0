"""
Authenticated session against one tenant.

A VaultAccount owns exactly one client handle. Source and destination use
separate accounts; an account is never shared between tenants.
"""

from typing import Callable, List, Optional, TypeVar, Awaitable

from logconfig.logger import get_logger
from vault_migration.exceptions.migration_exceptions import (
    AuthError,
    ItemCreateError,
    ItemFetchError,
    ItemListError,
    VaultApiError,
    VaultCreateError,
)
from vault_migration.models.item import (
    Item,
    ItemCategory,
    ItemCreateParams,
    ItemSummary,
    Vault,
)
from vault_migration.services.retry_manager import RetryManager
from vault_migration.services.vault_client import ClientFactory, VaultClient

logger = get_logger()

T = TypeVar("T")


class VaultAccount:
    """Session wrapper adding retries and error classification to a client."""

    def __init__(
        self,
        client_factory: ClientFactory,
        retry_manager: Optional[RetryManager] = None,
        name: str = "account",
    ):
        """
        Args:
            client_factory: Builds a client from a token
            retry_manager: Retry executor for remote calls
            name: Label used in logs and errors ("source", "destination")
        """
        self.client_factory = client_factory
        self.retry_manager = retry_manager or RetryManager()
        self.name = name
        self._client: Optional[VaultClient] = None

    @property
    def is_authenticated(self) -> bool:
        return self._client is not None

    @property
    def client(self) -> VaultClient:
        if self._client is None:
            raise AuthError(
                f"{self.name} account used before authentication",
                tenant=self.name,
            )
        return self._client

    async def authenticate(self, token: Optional[str]) -> None:
        """
        Establish the session for ``token``.

        Raises:
            AuthError: If the token is empty or rejected by the tenant
        """
        if not token or not token.strip():
            raise AuthError(f"No token provided for {self.name} account", tenant=self.name)

        if self._client is not None:
            await self.close()

        client = self.client_factory(token.strip())
        try:
            await client.verify()
        except AuthError as e:
            await client.close()
            raise AuthError(
                f"{self.name} token rejected: {e.message}",
                tenant=self.name,
                original_exception=e,
            )
        except Exception as e:
            await client.close()
            raise AuthError(
                f"Failed to authenticate {self.name} account: {e}",
                tenant=self.name,
                original_exception=e,
            )

        self._client = client
        logger.info(f"Authenticated {self.name} account")

    async def list_vaults(self) -> List[Vault]:
        client = self.client
        return await self._retry(client.list_vaults, f"list {self.name} vaults")

    async def list_item_summaries(self, vault_id: str) -> List[ItemSummary]:
        """
        List active item summaries of a vault.

        Raises:
            ItemListError: If the vault cannot be enumerated
        """
        client = self.client
        try:
            return await self._retry(
                lambda: client.list_items(vault_id),
                f"list items in vault {vault_id}",
            )
        except AuthError:
            raise
        except Exception as e:
            raise ItemListError(
                f"Failed to list items in vault {vault_id}: {e}",
                vault_id=vault_id,
                original_exception=e,
            )

    async def get_item(self, vault_id: str, item_id: str) -> Item:
        """
        Read a full item, resolving attached files and the document as bytes.

        A failed attachment read is logged as a warning and the item is
        returned without that payload.

        Raises:
            ItemFetchError: If the item cannot be read
        """
        client = self.client
        try:
            item = await self._retry(
                lambda: client.get_item(vault_id, item_id),
                f"get item {item_id}",
            )
        except AuthError:
            raise
        except VaultApiError as e:
            # Deleted between listing and fetch
            if e.is_not_found:
                message = f"Item {item_id} no longer exists in vault {vault_id}"
            else:
                message = f"Failed to fetch item {item_id}: {e.message}"
            raise ItemFetchError(
                message,
                vault_id=vault_id,
                item_id=item_id,
                status_code=e.status_code,
                retryable=e.retryable and not e.is_not_found,
                original_exception=e,
            )
        except Exception as e:
            raise ItemFetchError(
                f"Failed to fetch item {item_id}: {e}",
                vault_id=vault_id,
                item_id=item_id,
                original_exception=e,
            )

        for attached in item.files:
            if attached.content is not None or not attached.id:
                continue
            attached.content = await self._read_payload(
                client, vault_id, item_id, attached.id, attached.name
            )

        if (
            item.category == ItemCategory.DOCUMENT
            and item.document is not None
            and item.document.content is None
            and item.document.id
        ):
            item.document.content = await self._read_payload(
                client, vault_id, item_id, item.document.id, item.document.name
            )

        return item

    async def create_vault(self, name: str) -> Vault:
        """
        Create a destination vault.

        Raises:
            VaultCreateError: If the name is invalid or already taken
        """
        if not name or not name.strip():
            raise VaultCreateError("Vault name must not be empty", vault_name=name)

        client = self.client
        try:
            vault = await client.create_vault(name)
        except AuthError:
            raise
        except Exception as e:
            raise VaultCreateError(
                f"Failed to create vault '{name}': {e}",
                vault_name=name,
                original_exception=e,
            )

        logger.info(f"Created {self.name} vault '{vault.name}' ({vault.id})")
        return vault

    async def create_item(self, params: ItemCreateParams) -> str:
        """
        Create an item and return its id.

        Raises:
            ItemCreateError: ``validation`` kind for rejected shapes,
                ``transient`` kind once retries are exhausted
        """
        client = self.client
        try:
            created = await self._retry(
                lambda: client.create_item(params),
                f"create item '{params.title}'",
            )
        except AuthError:
            raise
        except VaultApiError as e:
            kind = ItemCreateError.TRANSIENT if e.retryable else ItemCreateError.VALIDATION
            raise ItemCreateError(
                f"Failed to create item '{params.title}': {e.message}",
                kind=kind,
                status_code=e.status_code,
                vault_id=params.vault_id,
                original_exception=e,
            )
        except Exception as e:
            raise ItemCreateError(
                f"Failed to create item '{params.title}': {e}",
                kind=ItemCreateError.VALIDATION,
                vault_id=params.vault_id,
                original_exception=e,
            )
        return created.id

    async def count_items(self, vault_id: str, include_archived: bool = False) -> int:
        """
        Count items in a vault.

        Args:
            vault_id: Vault to count
            include_archived: Also count archived items; a failed archived
                listing is logged and ignored

        Returns:
            Number of items
        """
        client = self.client
        active = await self._retry(
            lambda: client.list_items(vault_id),
            f"count items in vault {vault_id}",
        )
        count = len(active)

        if include_archived:
            try:
                archived = await self._retry(
                    lambda: client.list_items(vault_id, archived=True),
                    f"count archived items in vault {vault_id}",
                )
                count += len(archived)
            except AuthError:
                raise
            except Exception as e:
                logger.warning(f"Failed to list archived items for vault {vault_id}: {e}")

        return count

    async def close(self) -> None:
        if self._client is not None:
            client, self._client = self._client, None
            await client.close()

    async def _read_payload(
        self,
        client: VaultClient,
        vault_id: str,
        item_id: str,
        file_id: str,
        name: str,
    ) -> Optional[bytes]:
        try:
            return await self._retry(
                lambda: client.read_file(vault_id, item_id, file_id),
                f"read file '{name}' of item {item_id}",
            )
        except AuthError:
            raise
        except Exception as e:
            logger.bind(vault_id=vault_id, item_id=item_id).warning(
                f"Failed to read file '{name}' for item {item_id}: {e}"
            )
            return None

    async def _retry(self, operation: Callable[[], Awaitable[T]], operation_name: str) -> T:
        return await self.retry_manager.execute(operation, operation_name)
