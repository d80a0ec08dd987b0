"""
Fallback path for items the account API cannot construct.

Custom items are read from the source through the credential CLI, rewritten
into a create template bound to the destination's custom template, written to
a temporary file and created through the CLI again. Any failure is fatal to
the item only.
"""

import asyncio
import json
import os
import tempfile
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from logconfig.logger import get_logger
from vault_migration.exceptions.migration_exceptions import BridgeError
from vault_migration.models.item import ItemSummary
from vault_migration.services.op_cli import OpCli
from vault_migration.services.retry_manager import RetryManager

logger = get_logger()

IDENTITY_KEYS = ("id", "created_at", "updated_at", "last_edited_by", "version")
FIELD_KEYS_TO_DROP = ("reference", "id")


class CustomItemBridge:
    """Creates custom-category items through the credential CLI."""

    def __init__(
        self,
        cli: OpCli,
        source_token: str,
        dest_token: str,
        custom_template_id: Optional[str] = None,
        retry_manager: Optional[RetryManager] = None,
    ):
        self.cli = cli
        self.retry_manager = retry_manager or RetryManager()
        self.source_token = source_token
        self.dest_token = dest_token
        self.custom_template_id = (custom_template_id or "").strip() or None
        self._template_lock = asyncio.Lock()

    async def migrate(
        self,
        item: ItemSummary,
        source_vault_id: str,
        dest_vault_id: str,
    ) -> Optional[Dict[str, Any]]:
        """
        Copy one custom item into ``dest_vault_id``.

        Args:
            item: Summary of the source item
            source_vault_id: Vault holding the item
            dest_vault_id: Destination vault

        Returns:
            CLI output of the create command

        Raises:
            BridgeError: If any CLI step fails or no template id is available
        """
        log = logger.bind(vault_id=source_vault_id, item_id=item.id)
        log.info(f"Migrating custom item '{item.title}' via credential CLI")

        source_item = await self.retry_manager.execute(
            lambda: self.cli.item_get(item.id, source_vault_id, self.source_token),
            f"op item get {item.id}",
        )
        if not isinstance(source_item, dict):
            raise BridgeError(
                f"Unexpected CLI output for item {item.id}",
                vault_id=source_vault_id,
                item_id=item.id,
            )

        template_id = await self.resolve_template_id()
        template = self.build_template(source_item, template_id, dest_vault_id)

        async with self._template_file(item.id, template) as template_path:
            result = await self.retry_manager.execute(
                lambda: self._create_once(dest_vault_id, template_path),
                f"op item create {item.id}",
            )

        log.info(f"Created custom item '{item.title}' in vault {dest_vault_id}")
        return result

    async def resolve_template_id(self) -> str:
        """
        Return the destination custom template id.

        Uses the operator-supplied id when present; otherwise discovers it
        once from the destination template list and caches it.
        """
        if self.custom_template_id:
            return self.custom_template_id

        async with self._template_lock:
            if self.custom_template_id:
                return self.custom_template_id

            try:
                templates = await self.retry_manager.execute(
                    lambda: self.cli.template_list(self.dest_token),
                    "op item template list",
                )
            except BridgeError as e:
                raise BridgeError(
                    f"Failed to get custom template: {e.message}. "
                    f"Please provide a custom template id.",
                    original_exception=e,
                )

            custom = next(
                (
                    t for t in templates
                    if isinstance(t, dict) and (t.get("name") == "Custom" or t.get("category") == "CUSTOM")
                ),
                None,
            )
            if custom is None or not (custom.get("uuid") or custom.get("id")):
                raise BridgeError(
                    "No custom template found in destination account. "
                    "Please provide a custom template id."
                )

            self.custom_template_id = custom.get("uuid") or custom.get("id")
            logger.info(f"Discovered destination custom template {self.custom_template_id}")
            return self.custom_template_id

    async def _create_once(self, dest_vault_id: str, template_path: str) -> Optional[Dict[str, Any]]:
        try:
            return await self.cli.item_create(dest_vault_id, template_path, self.dest_token)
        except BridgeError as e:
            # A conflict may have been raised after the item was written;
            # only a rate-limited attempt is known to have created nothing.
            if e.retryable and not e.is_rate_limited:
                e.retryable = False
            raise

    @staticmethod
    def build_template(
        source_item: Dict[str, Any],
        template_id: str,
        dest_vault_id: str,
    ) -> Dict[str, Any]:
        """Rewrite a CLI item export into a create template for the destination."""
        template = {k: v for k, v in source_item.items() if k not in IDENTITY_KEYS}
        template["category"] = "CUSTOM"
        template["category_id"] = template_id
        template["fields"] = [
            {k: v for k, v in f.items() if k not in FIELD_KEYS_TO_DROP}
            for f in source_item.get("fields") or []
            if isinstance(f, dict)
        ]
        template["vault"] = {"id": dest_vault_id}
        return template

    @asynccontextmanager
    async def _template_file(self, item_id: str, template: Dict[str, Any]) -> AsyncIterator[str]:
        handle = tempfile.NamedTemporaryFile(
            mode="w",
            prefix=f"op-custom-item-{item_id}-{int(time.time() * 1000)}-",
            suffix=".json",
            delete=False,
            encoding="utf-8",
        )
        try:
            with handle:
                json.dump(template, handle, indent=2)
            yield handle.name
        finally:
            try:
                os.unlink(handle.name)
            except FileNotFoundError:
                pass
            logger.debug(f"Removed template file {handle.name}")
