"""
Async wrapper around the external credential CLI (``op``).

Each call runs the CLI as a child process (no shell) with the service account
token of the tenant it targets. Every failure surfaces as BridgeError.
"""

import asyncio
import contextlib
import json
import os
from typing import Any, Dict, List, Optional

from logconfig.logger import get_logger
from vault_migration.exceptions.migration_exceptions import BridgeError, is_transient_message

logger = get_logger()

TOKEN_ENV_VAR = "OP_SERVICE_ACCOUNT_TOKEN"


class OpCli:
    """Thin async runner for ``op`` commands."""

    def __init__(self, cli_path: str = "op", timeout: float = 120.0):
        self.cli_path = cli_path
        self.timeout = timeout

    async def run(self, args: List[str], token: str) -> str:
        """
        Run ``op <args>`` and return its stdout.

        Args:
            args: CLI arguments after the executable
            token: Service account token for the child process

        Returns:
            Decoded stdout

        Raises:
            BridgeError: On a missing executable, timeout or non-zero exit
        """
        command = " ".join([self.cli_path, *args])
        env = {**os.environ, TOKEN_ENV_VAR: token}

        try:
            process = await asyncio.create_subprocess_exec(
                self.cli_path,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except FileNotFoundError as e:
            raise BridgeError(
                f"Credential CLI not found at '{self.cli_path}'",
                command=command,
                original_exception=e,
            )

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise BridgeError(
                f"Command timed out after {self.timeout}s: {command}",
                command=command,
                original_exception=e,
            )
        finally:
            # Also reached when the awaiting task is cancelled
            if process.returncode is None:
                await self._kill(process)

        if process.returncode != 0:
            error_output = stderr.decode("utf-8", errors="replace").strip()
            raise BridgeError(
                f"Command failed ({process.returncode}): {command}: {error_output}",
                command=command,
                exit_code=process.returncode,
                retryable=is_transient_message(error_output),
            )

        return stdout.decode("utf-8", errors="replace")

    @staticmethod
    async def _kill(process: asyncio.subprocess.Process) -> None:
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        await process.wait()
        logger.debug(f"Killed credential CLI process {process.pid}")

    async def run_json(self, args: List[str], token: str) -> Any:
        output = await self.run(args, token)
        try:
            return json.loads(output)
        except json.JSONDecodeError as e:
            raise BridgeError(
                f"Invalid JSON from '{self.cli_path} {' '.join(args)}': {e}",
                command=" ".join([self.cli_path, *args]),
                original_exception=e,
            )

    async def item_get(self, item_id: str, vault_id: str, token: str) -> Dict[str, Any]:
        return await self.run_json(
            ["item", "get", item_id, "--vault", vault_id, "--format", "json"], token
        )

    async def item_create(self, vault_id: str, template_path: str, token: str) -> Optional[Dict[str, Any]]:
        return await self.run_json(
            ["item", "create", "--vault", vault_id, "--template", template_path, "--format", "json"],
            token,
        )

    async def template_list(self, token: str) -> List[Dict[str, Any]]:
        templates = await self.run_json(["item", "template", "list", "--format", "json"], token)
        return templates or []
