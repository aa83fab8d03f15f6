"""AsyncSSH-based remote session for instance setup.

A session is bound to one host, authenticated with the fleet's key pair,
and hands captured command output back to setup routines.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field

import asyncssh
from loguru import logger
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_fixed

from burst.core.exceptions import AuthenticationError, BurstError, ConnectionError

log = logger.bind(component="ssh")


@dataclass
class RemoteSession:
    """Authenticated remote shell on one instance.

    Example:
        >>> session = await RemoteSession.connect("54.1.2.3", "/tmp/key.pem")
        >>> await session.cmd("cat /etc/os-release")
        'NAME="Amazon Linux"...'
        >>> await session.close()

    As context manager:
        >>> async with await RemoteSession.connect(host, key) as session:
        ...     code, out, err = await session.run("ls")
    """

    host: str
    user: str
    key_path: str
    port: int = 22

    _conn: asyncssh.SSHClientConnection | None = field(default=None, repr=False)

    @classmethod
    async def connect(
        cls,
        host: str,
        key_path: str,
        *,
        user: str = "ec2-user",
        port: int = 22,
        attempts: int = 5,
        delay: float = 1.0,
        timeout: float = 30.0,
    ) -> RemoteSession:
        """Open a session, retrying the TCP connect a fixed number of times.

        Raises:
            AuthenticationError: The host rejected the key.
            ConnectionError: The port never accepted a connection, or the
                handshake failed.
        """
        session = cls(host=host, user=user, key_path=key_path, port=port)

        @retry(
            stop=stop_after_attempt(attempts),
            wait=wait_fixed(delay),
            retry=retry_if_exception_type(OSError),
            reraise=True,
        )
        async def do_connect() -> asyncssh.SSHClientConnection:
            log.trace(f"SSH: connecting to {host}:{port} ({user})")
            return await asyncssh.connect(
                host,
                port=port,
                username=user,
                client_keys=[key_path],
                known_hosts=None,
                connect_timeout=timeout,
            )

        try:
            session._conn = await do_connect()
        except asyncssh.PermissionDenied as e:
            raise AuthenticationError(host, port, user, e.reason) from e
        except asyncssh.KeyImportError as e:
            raise AuthenticationError(host, port, user, f"unusable private key: {e}") from e
        except OSError as e:
            raise ConnectionError(host, port, f"failed to connect to ssh port: {e}") from e
        except asyncssh.Error as e:
            raise ConnectionError(host, port, f"failed to perform ssh handshake: {e.reason}") from e

        log.debug(f"SSH: connected to {host}")
        return session

    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        if self._conn is not None:
            self._conn.close()
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._conn.wait_closed(), timeout=5.0)
            self._conn = None

    async def __aenter__(self) -> RemoteSession:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    def _require_connection(self) -> asyncssh.SSHClientConnection:
        if self._conn is None:
            raise RuntimeError("Not connected. Call RemoteSession.connect() first.")
        return self._conn

    async def run(
        self,
        command: str,
        *,
        timeout: float | None = None,
        check: bool = False,
    ) -> tuple[int, str, str]:
        """Execute a command and return (exit_code, stdout, stderr).

        Raises:
            BurstError: The channel could not be opened or the command did
                not complete, or check=True and the exit code is non-zero.
        """
        conn = self._require_connection()
        try:
            result = await conn.run(command, timeout=timeout, check=False)
        except (asyncssh.Error, OSError) as e:
            raise BurstError(f"failed to execute command '{command}' on {self.host}: {e}") from e

        code = result.exit_status or 0
        stdout = str(result.stdout or "")
        stderr = str(result.stderr or "")

        if check and code != 0:
            raise BurstError(f"command '{command}' exited with {code} on {self.host}: {stderr}")

        return code, stdout, stderr

    async def cmd(self, command: str, *, timeout: float | None = None) -> str:
        """Execute a command and return everything it wrote to stdout."""
        _, stdout, _ = await self.run(command, timeout=timeout)
        return stdout
