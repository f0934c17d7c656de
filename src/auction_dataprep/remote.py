"""Remote command execution over ssh.

Every cluster-configuration, backup and loader command runs through a
RemoteShell. Commands for remote hosts are handed to ssh as one argument
and interpreted by the remote login shell. Commands for localhost run
under a local sh. Processes are started with asyncio.create_subprocess_exec
and array arguments.
"""

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Protocol

LOCAL_HOSTS = frozenset({"localhost", "127.0.0.1"})


@dataclass
class CommandResult:
    """Result of one shell command.

    Attributes:
        host: Host the command ran on
        command: Command line as sent to the host's shell
        returncode: Process exit status
        output: Combined stdout and stderr
    """

    host: str
    command: str
    returncode: int
    output: str = ""

    @property
    def success(self) -> bool:
        return self.returncode == 0


class CommandRunner(Protocol):
    """Capability to run shell commands on named hosts."""

    async def run(self, host: str, command: str) -> CommandResult:
        ...

    async def launch(
        self, host: str, command: str, output_path: Path
    ) -> asyncio.subprocess.Process:
        ...

    def follow(self, host: str, command: str) -> AsyncIterator[str]:
        ...


class RemoteShell:
    """Runs commands on hosts through ssh.

    Example:
        shell = RemoteShell(user="root")
        result = await shell.run("db1", "du -hsc /mnt/dbData")
    """

    SSH_OPTIONS = ("-o", "StrictHostKeyChecking=no", "-o", "BatchMode=yes")

    def __init__(self, user: str = "root"):
        self.user = user

    def argv(self, host: str, command: str) -> list[str]:
        """Build the local argument vector that runs command on host."""
        if host in LOCAL_HOSTS:
            return ["sh", "-c", command]
        return ["ssh", *self.SSH_OPTIONS, f"{self.user}@{host}", command]

    async def run(self, host: str, command: str) -> CommandResult:
        """Run a command and wait for it, capturing combined output."""
        proc = await asyncio.create_subprocess_exec(
            *self.argv(host, command),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        stdout, _ = await proc.communicate()
        return CommandResult(
            host=host,
            command=command,
            returncode=proc.returncode if proc.returncode is not None else -1,
            output=stdout.decode("utf-8", errors="replace"),
        )

    async def launch(
        self, host: str, command: str, output_path: Path
    ) -> asyncio.subprocess.Process:
        """Start a command without waiting for it.

        Combined output is written to output_path on the local machine.
        The caller owns the returned process and must eventually wait on it.
        """
        with open(output_path, "wb") as out:
            return await asyncio.create_subprocess_exec(
                *self.argv(host, command),
                stdout=out,
                stderr=asyncio.subprocess.STDOUT,
                stdin=asyncio.subprocess.DEVNULL,
                start_new_session=True,
            )

    async def follow(self, host: str, command: str) -> AsyncIterator[str]:
        """Yield output lines of a command until it exits."""
        proc = await asyncio.create_subprocess_exec(
            *self.argv(host, command),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        assert proc.stdout is not None
        try:
            while True:
                line = await proc.stdout.readline()
                if not line:
                    break
                yield line.decode("utf-8", errors="replace")
        finally:
            if proc.returncode is None:
                try:
                    proc.terminate()
                except ProcessLookupError:
                    pass
            await proc.wait()
