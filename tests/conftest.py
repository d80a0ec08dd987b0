"""Pytest configuration and fixtures for vault migrator tests."""

import itertools
import json
from collections.abc import AsyncIterator
from typing import Any, Callable, Dict, List, Optional

import pytest
import pytest_asyncio

from vault_migration.core.settings import Settings
from vault_migration.exceptions import AuthError, BridgeError, VaultApiError
from vault_migration.models.item import (
    Item,
    ItemCategory,
    ItemCreateParams,
    ItemDocument,
    ItemFile,
    ItemSummary,
    Vault,
)
from vault_migration.services.item_transcoder import ItemTranscoder
from vault_migration.services.migration_orchestrator import MigrationOrchestrator
from vault_migration.services.retry_manager import RetryConfig, RetryManager
from vault_migration.services.run_log import RunLog
from vault_migration.services.vault_account import VaultAccount
from vault_migration.services.vault_client import VaultClient

SOURCE_TOKEN = "ops_source_token"
DEST_TOKEN = "ops_dest_token"


class FakeTenant:
    """In-memory tenant with failure injection."""

    def __init__(self, token: str, name: str = "tenant"):
        self.token = token
        self.name = name
        self.vaults: Dict[str, Vault] = {}
        self.items: Dict[str, Dict[str, Item]] = {}
        self.archived: Dict[str, List[ItemSummary]] = {}
        self.files: Dict[str, bytes] = {}
        self.created_items: List[ItemCreateParams] = []
        self.create_attempts: Dict[str, int] = {}
        # title -> errors raised by successive create attempts
        self.create_failures: Dict[str, List[Exception]] = {}
        self.get_failures: Dict[str, Exception] = {}
        self.file_failures: Dict[str, Exception] = {}
        self.list_items_error: Optional[Exception] = None
        self.archived_error: Optional[Exception] = None
        self.on_create: Optional[Callable[[ItemCreateParams], None]] = None
        self.drop_created: set = set()
        self.clients: List["FakeVaultClient"] = []
        self._ids = itertools.count(1)

    def add_vault(self, vault_id: str, name: str) -> Vault:
        vault = Vault(id=vault_id, name=name)
        self.vaults[vault_id] = vault
        self.items.setdefault(vault_id, {})
        return vault

    def add_item(self, vault_id: str, item_id: str, title: str, **kwargs: Any) -> Item:
        item = Item(id=item_id, title=title, vault_id=vault_id, **kwargs)
        self.items[vault_id][item_id] = item
        return item

    def add_file(self, file_id: str, content: bytes) -> None:
        self.files[file_id] = content

    def vault_by_name(self, name: str) -> Optional[Vault]:
        return next((v for v in self.vaults.values() if v.name == name), None)

    def client(self, token: str) -> "FakeVaultClient":
        client = FakeVaultClient(self, token)
        self.clients.append(client)
        return client

    def next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"


class FakeVaultClient(VaultClient):
    def __init__(self, tenant: FakeTenant, token: str):
        self.tenant = tenant
        self.token = token
        self.closed = False

    async def verify(self) -> None:
        if self.token != self.tenant.token:
            raise AuthError("Invalid service account token", status_code=401)

    async def list_vaults(self) -> List[Vault]:
        return [
            Vault(id=v.id, name=v.name, item_count=len(self.tenant.items.get(v.id, {})))
            for v in self.tenant.vaults.values()
        ]

    async def list_items(self, vault_id: str, archived: bool = False) -> List[ItemSummary]:
        if archived:
            if self.tenant.archived_error:
                raise self.tenant.archived_error
            return list(self.tenant.archived.get(vault_id, []))
        if self.tenant.list_items_error:
            raise self.tenant.list_items_error
        if vault_id not in self.tenant.vaults:
            raise VaultApiError(f"Vault {vault_id} not found", status_code=404)
        return [item.summary() for item in self.tenant.items[vault_id].values()]

    async def get_item(self, vault_id: str, item_id: str) -> Item:
        if item_id in self.tenant.get_failures:
            raise self.tenant.get_failures[item_id]
        item = self.tenant.items.get(vault_id, {}).get(item_id)
        if item is None:
            raise VaultApiError(f"Item {item_id} not found", status_code=404)
        copy = item.model_copy(deep=True)
        for attached in copy.files:
            attached.content = None
        if copy.document is not None:
            copy.document.content = None
        return copy

    async def read_file(self, vault_id: str, item_id: str, file_id: str) -> bytes:
        if file_id in self.tenant.file_failures:
            raise self.tenant.file_failures[file_id]
        if file_id not in self.tenant.files:
            raise VaultApiError(f"File {file_id} not found", status_code=404)
        return self.tenant.files[file_id]

    async def create_vault(self, name: str) -> Vault:
        if self.tenant.vault_by_name(name) is not None:
            raise VaultApiError(f"Vault '{name}' already exists", status_code=409, retryable=True)
        return self.tenant.add_vault(self.tenant.next_id("vault"), name)

    async def create_item(self, params: ItemCreateParams) -> Item:
        attempts = self.tenant.create_attempts.get(params.title, 0) + 1
        self.tenant.create_attempts[params.title] = attempts

        pending = self.tenant.create_failures.get(params.title)
        if pending:
            raise pending.pop(0)

        if self.tenant.on_create is not None:
            self.tenant.on_create(params)

        self.tenant.created_items.append(params)
        item = Item(
            id=self.tenant.next_id("item"),
            title=params.title,
            category=params.category,
            vault_id=params.vault_id,
            fields=params.fields,
            sections=params.sections,
            files=[
                ItemFile(name=f.name, content=f.content, section_id=f.section_id, field_id=f.field_id)
                for f in params.files
            ],
            document=(
                ItemDocument(name=params.document.name, content=params.document.content)
                if params.document else None
            ),
            tags=params.tags,
            websites=params.websites,
            notes=params.notes,
        )
        if params.title not in self.tenant.drop_created:
            self.tenant.items.setdefault(params.vault_id, {})[item.id] = item
        return item

    async def close(self) -> None:
        self.closed = True


class FakeOpCli:
    """Stands in for OpCli; records every call."""

    def __init__(
        self,
        items: Optional[Dict[str, Dict[str, Any]]] = None,
        templates: Optional[List[Dict[str, Any]]] = None,
    ):
        self.items = items or {}
        self.templates = templates if templates is not None else []
        self.calls: List[tuple] = []
        self.created_templates: List[Dict[str, Any]] = []
        self.template_paths: List[str] = []
        self.create_error: Optional[Exception] = None
        # Raised once each, in order, before any create or get succeeds
        self.create_errors: List[Exception] = []
        self.get_errors: List[Exception] = []

    async def item_get(self, item_id: str, vault_id: str, token: str) -> Dict[str, Any]:
        self.calls.append(("item_get", item_id, vault_id, token))
        if self.get_errors:
            raise self.get_errors.pop(0)
        if item_id not in self.items:
            raise BridgeError(f"Command failed (1): op item get {item_id}", exit_code=1)
        return json.loads(json.dumps(self.items[item_id]))

    async def template_list(self, token: str) -> List[Dict[str, Any]]:
        self.calls.append(("template_list", token))
        return self.templates

    async def item_create(self, vault_id: str, template_path: str, token: str) -> Dict[str, Any]:
        self.calls.append(("item_create", vault_id, template_path, token))
        self.template_paths.append(template_path)
        with open(template_path, encoding="utf-8") as handle:
            self.created_templates.append(json.load(handle))
        if self.create_errors:
            raise self.create_errors.pop(0)
        if self.create_error is not None:
            raise self.create_error
        return {"id": f"cli-{len(self.created_templates)}"}


def make_settings(**overrides: Any) -> Settings:
    values = {
        "RETRY_BASE_DELAY_MS": 0,
        "RETRY_MAX_DELAY_MS": 0,
        "VAULT_CONCURRENCY_LIMIT": 2,
        "ITEM_CONCURRENCY_LIMIT": 1,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def test_settings() -> Settings:
    """Settings with retries that never sleep."""
    return make_settings()


@pytest.fixture
def retry_manager() -> RetryManager:
    return RetryManager(RetryConfig(max_attempts=3, base_delay_ms=0, max_delay_ms=0))


@pytest.fixture
def source_tenant() -> FakeTenant:
    tenant = FakeTenant(SOURCE_TOKEN, name="source")
    tenant.add_vault("src-vault-1", "Engineering")
    return tenant


@pytest.fixture
def dest_tenant() -> FakeTenant:
    return FakeTenant(DEST_TOKEN, name="destination")


@pytest_asyncio.fixture
async def source_account(source_tenant: FakeTenant, retry_manager: RetryManager) -> AsyncIterator[VaultAccount]:
    account = VaultAccount(source_tenant.client, retry_manager, name="source")
    await account.authenticate(SOURCE_TOKEN)
    yield account
    await account.close()


@pytest_asyncio.fixture
async def dest_account(dest_tenant: FakeTenant, retry_manager: RetryManager) -> AsyncIterator[VaultAccount]:
    account = VaultAccount(dest_tenant.client, retry_manager, name="destination")
    await account.authenticate(DEST_TOKEN)
    yield account
    await account.close()


@pytest.fixture
def run_log() -> RunLog:
    return RunLog()


@pytest.fixture
def orchestrator(
    source_account: VaultAccount,
    dest_account: VaultAccount,
    run_log: RunLog,
    test_settings: Settings,
) -> MigrationOrchestrator:
    return MigrationOrchestrator(
        source_account,
        dest_account,
        transcoder=ItemTranscoder(test_settings.SECURE_NOTE_PLACEHOLDER),
        run_log=run_log,
        settings=test_settings,
    )


def add_logins(tenant: FakeTenant, vault_id: str, count: int) -> List[Item]:
    return [
        tenant.add_item(
            vault_id,
            f"item-{index}",
            f"Login {index}",
            category=ItemCategory.LOGIN,
            fields=[
                {"id": "username", "title": "username", "fieldType": "Text", "value": f"user{index}"},
                {"id": "password", "title": "password", "fieldType": "Concealed", "value": "s3cret"},
            ],
        )
        for index in range(1, count + 1)
    ]
