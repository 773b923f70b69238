# rest_client_oauth2/helper_process.py
"""
External OAuth2 helper process.

The helper is a standalone program that runs the whole authorization flow
itself and talks over stdin/stdout:

1. the helper prints ``ready``
2. the engine writes the provider document as one JSON line
3. the helper prints the token JSON and exits
"""

import asyncio
import json
import logging
import os
from enum import Enum
from typing import Any, List, Mapping, Optional, Protocol, Sequence

from pydantic import ValidationError

from .errors import HelperProtocolError
from .provider_config import TokenSet

logger = logging.getLogger(__name__)

READY_LINE = "ready"
LINE_TERMINATOR = "\r\n"
TERMINATE_GRACE = 5.0

# Set by Electron hosts; a child inheriting them would not start as an app
_STRIPPED_ENV_VARS = ("ATOM_SHELL_INTERNAL_RUN_AS_NODE", "ELECTRON_RUN_AS_NODE")


class HelperProcess(Protocol):
    """Line-oriented handle on a helper process."""

    async def spawn(self) -> None: ...

    async def await_line(self) -> Optional[str]:
        """Next stdout line without its terminator, or None at end of output."""
        ...

    async def write_line(self, line: str) -> None: ...

    async def await_close(self) -> int:
        """Wait for the process to exit and return its exit status."""
        ...

    async def terminate(self) -> None:
        """Stop the process if it is still running."""
        ...


class SubprocessHelper:
    """HelperProcess backed by ``asyncio.create_subprocess_exec``."""

    def __init__(self, command: Sequence[str], env: Optional[dict] = None):
        self.command = list(command)
        self.env = env
        self._process: Optional[asyncio.subprocess.Process] = None

    def _child_env(self) -> dict:
        env = dict(os.environ if self.env is None else self.env)
        for name in _STRIPPED_ENV_VARS:
            env.pop(name, None)
        return env

    async def spawn(self) -> None:
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                env=self._child_env(),
            )
        except OSError as e:
            raise HelperProtocolError(f"Failed to start helper {self.command[0]}: {e}") from e
        logger.debug(f"Spawned helper {self.command[0]} (pid {self._process.pid})")

    def _require_process(self) -> asyncio.subprocess.Process:
        if self._process is None:
            raise HelperProtocolError("Helper process has not been spawned")
        return self._process

    async def await_line(self) -> Optional[str]:
        process = self._require_process()
        assert process.stdout is not None
        raw = await process.stdout.readline()
        if not raw:
            return None
        try:
            return raw.decode("utf-8").rstrip("\r\n")
        except UnicodeDecodeError as e:
            raise HelperProtocolError(f"Helper printed a non UTF-8 line: {e}") from e

    async def write_line(self, line: str) -> None:
        process = self._require_process()
        assert process.stdin is not None
        try:
            process.stdin.write((line + LINE_TERMINATOR).encode("utf-8"))
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise HelperProtocolError(f"Helper closed its input: {e}") from e

    async def await_close(self) -> int:
        process = self._require_process()
        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()
        return await process.wait()

    async def terminate(self) -> None:
        process = self._process
        if process is None or process.returncode is not None:
            return
        logger.debug(f"Terminating helper {self.command[0]} (pid {process.pid})")
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=TERMINATE_GRACE)
        except asyncio.TimeoutError:
            try:
                process.kill()
            except ProcessLookupError:
                return
            await process.wait()


class HelperState(str, Enum):
    IDLE = "idle"
    READY = "ready"
    SENT = "sent"
    COLLECTING = "collecting"
    CLOSED = "closed"


class HelperProtocolSession:
    """Drives one helper run from spawn to parsed tokens."""

    def __init__(self, helper: HelperProcess):
        self.helper = helper
        self.state = HelperState.IDLE
        self.lines: List[str] = []

    def _transition(self, state: HelperState) -> None:
        logger.debug(f"Helper protocol {self.state.value} -> {state.value}")
        self.state = state

    async def run(self, document: Mapping[str, Any]) -> TokenSet:
        """
        Hand the provider document to the helper and return its tokens.

        The document is sent as read from the provider file, unknown keys
        included. A helper that is still running when this returns or raises
        (including on cancellation) is terminated.

        Raises:
            HelperProtocolError: If the helper exits early or with a non-zero
                                 status, breaks its pipes, or prints something
                                 other than a token JSON object
        """
        await self.helper.spawn()
        try:
            return await self._exchange(document)
        except (OSError, UnicodeDecodeError) as e:
            raise HelperProtocolError(f"Helper I/O failed: {e}") from e
        finally:
            if self.state != HelperState.CLOSED:
                await self.helper.terminate()
                self._transition(HelperState.CLOSED)

    async def _exchange(self, document: Mapping[str, Any]) -> TokenSet:
        # Output printed before "ready" is ignored
        while True:
            line = await self.helper.await_line()
            if line is None:
                await self._close()
                raise HelperProtocolError("Helper exited before it was ready")
            if line.strip() == READY_LINE:
                break
        self._transition(HelperState.READY)

        await self.helper.write_line(json.dumps(dict(document)))
        self._transition(HelperState.SENT)

        self._transition(HelperState.COLLECTING)
        while True:
            line = await self.helper.await_line()
            if line is None:
                break
            if line.strip():
                self.lines.append(line)

        status = await self._close()
        if status != 0:
            raise HelperProtocolError(f"Helper exited with status {status}")
        if not self.lines:
            raise HelperProtocolError("Helper produced no token output")

        try:
            return TokenSet.model_validate(json.loads(self.lines[0]))
        except (json.JSONDecodeError, ValidationError) as e:
            raise HelperProtocolError(f"Helper printed invalid token JSON: {e}") from e

    async def _close(self) -> int:
        status = await self.helper.await_close()
        self._transition(HelperState.CLOSED)
        return status
