"""Per-stage plain-text log files.

Each orchestrator stage writes the command lines it issues and their
verbatim output to its own file under the run's log directory. Only
summaries reach the operator console.
"""

from pathlib import Path
from typing import TextIO

from auction_dataprep.exceptions import StageLogError
from auction_dataprep.remote import CommandResult


class StageLog:
    """Writable stage log.

    Usable as a context manager. Exposes the underlying file through
    ``handle`` for collaborators that take a log sink.

    Example:
        with StageLog.open(log_dir, "CleanData_W1I1.log") as log:
            log.line("Cleaning up data services")
            log.record(await shell.run(host, cmd))
    """

    def __init__(self, path: Path, handle: TextIO):
        self.path = path
        self.handle = handle

    @classmethod
    def open(cls, log_dir: str | Path, name: str) -> "StageLog":
        """Open (truncate) a stage log.

        Raises:
            StageLogError: If the file cannot be opened
        """
        path = Path(log_dir) / name
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            handle = open(path, "w")
        except OSError as e:
            raise StageLogError(str(path), e.strerror or str(e)) from e
        return cls(path, handle)

    def line(self, text: str) -> None:
        self.handle.write(text if text.endswith("\n") else text + "\n")
        self.handle.flush()

    def record(self, result: CommandResult) -> CommandResult:
        """Write a command and its output, returning the result unchanged."""
        prefix = "" if result.host in ("localhost", "127.0.0.1") else f"[{result.host}] "
        self.line(f"{prefix}{result.command}")
        if result.output:
            self.handle.write(result.output)
            if not result.output.endswith("\n"):
                self.handle.write("\n")
        self.handle.flush()
        return result

    def close(self) -> None:
        if not self.handle.closed:
            self.handle.close()

    def __enter__(self) -> "StageLog":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
