"""Running external commands and reporting their failures."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence

_log = logging.getLogger(__name__)


class CommandError(Exception):
    """An external command could not be started or exited with an error."""

    def __init__(self, command: Sequence[str], returncode: int | None, output: str = "") -> None:
        self.command = tuple(command)
        self.returncode = returncode
        self.output = output
        message = f"{' '.join(self.command)} failed"
        if returncode is not None:
            message += f" with exit status {returncode}"
        if output:
            message += f": {output}"
        super().__init__(message)


class CommandExecutor:
    """Runs commands as child processes."""

    def _run(self, argv: list[str], stderr: int) -> subprocess.CompletedProcess[str]:
        _log.debug("running %s", " ".join(argv))
        try:
            return subprocess.run(
                argv,
                stdout=subprocess.PIPE,
                stderr=stderr,
                text=True,
                errors="replace",
                check=False,
            )
        except OSError as exc:
            raise CommandError(argv, None, str(exc)) from exc

    def execute(self, command: str, *args: str) -> None:
        """Run a command, raising CommandError if it fails."""
        argv = [command, *args]
        result = self._run(argv, subprocess.PIPE)
        if result.returncode:
            text = "\n".join(filter(None, [result.stdout.strip(), result.stderr.strip()]))
            raise CommandError(argv, result.returncode, text)

    def output(self, command: str, *args: str) -> str:
        """Run a command and return its standard output, stripped.

        On failure the raised CommandError carries both output streams.
        """
        argv = [command, *args]
        result = self._run(argv, subprocess.PIPE)
        out = result.stdout.strip()
        if result.returncode:
            text = "\n".join(filter(None, [out, result.stderr.strip()]))
            raise CommandError(argv, result.returncode, text)
        return out

    def combined_output(self, command: str, *args: str) -> str:
        """Run a command and return standard output and error together."""
        argv = [command, *args]
        result = self._run(argv, subprocess.STDOUT)
        out = result.stdout.strip()
        if result.returncode:
            raise CommandError(argv, result.returncode, out)
        return out

    def run_resident(self, timeout: float, command: str, *args: str) -> subprocess.Popen[bytes]:
        """Start a long-running program and check it survives ``timeout`` seconds.

        The process is returned if it is still running or exited cleanly;
        an early exit with an error status raises CommandError.
        """
        argv = [command, *args]
        _log.debug("starting resident %s", " ".join(argv))
        try:
            process = subprocess.Popen(
                argv, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL
            )
        except OSError as exc:
            raise CommandError(argv, None, str(exc)) from exc
        try:
            returncode = process.wait(timeout)
        except subprocess.TimeoutExpired:
            return process
        if returncode:
            raise CommandError(argv, returncode)
        return process