# ABOUTME: Command executor turning a cloud CLI invocation into a fetch operation for resolve()
# ABOUTME: Runs the command as a subprocess with a deadline and parses JSON output

import asyncio
import json
import logging
import shlex
from typing import Any, Dict, List, Optional, Sequence

from .exceptions import FetchError, FetchTimeoutError

logger = logging.getLogger(__name__)


class CommandExecutor:
    """Executes external commands whose stdout is a JSON document."""

    def __init__(
        self,
        timeout: Optional[float] = 60.0,
        env: Optional[Dict[str, str]] = None,
    ):
        """Initialize executor with a default deadline and extra environment."""
        self.timeout = timeout
        self.env = env

    def fetch_for(self, command: Sequence[str]):
        """Build a zero-argument fetch operation for the command."""
        cmd = list(command)
        if not cmd:
            raise ValueError("Command must not be empty")

        async def fetch() -> Any:
            return await self.run(cmd)

        return fetch

    async def run(self, cmd: List[str]) -> Any:
        """Run the command and return its parsed JSON output."""
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self.env,
            )
        except OSError as e:
            raise FetchError(
                f"Failed to start {cmd[0]}: {e}", {"command": shlex.join(cmd)}
            ) from e

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            # Kill the process if it's still running
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise FetchTimeoutError(
                f"Command timed out after {self.timeout}s: {shlex.join(cmd)}",
                {"command": shlex.join(cmd), "timeout": self.timeout},
            ) from e

        if process.returncode != 0:
            error_msg = stderr.decode(errors="replace").strip()
            raise FetchError(
                f"Command failed with exit code {process.returncode}: {error_msg}",
                {"command": shlex.join(cmd), "returncode": process.returncode},
            )

        output = stdout.decode(errors="replace").strip()
        if not output:
            return None

        try:
            return json.loads(output)
        except json.JSONDecodeError:
            logger.debug(f"Non-JSON output from {cmd[0]}, returning raw text")
            return output
