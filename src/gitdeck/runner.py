import logging
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path

from .constants import APP_NAME
from .errors import CommandError

logger = logging.getLogger(APP_NAME)


@dataclass(frozen=True)
class CommandResult:
    """The outcome of one external command.

    Attributes:
        args (list[str]): The full argv that was executed.
        returncode (int): The exit status (127 if the executable was missing).
        stdout (str): Captured standard output.
        stderr (str): Captured standard error.
    """

    args: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def check(self) -> "CommandResult":
        """Returns self, or raises `CommandError` if the command failed."""
        if not self.ok:
            raise CommandError(self.args, self.stderr or self.stdout, self.returncode)
        return self


class CommandRunner:
    """Executes external commands and reports exit code, stdout and stderr.

    This is the only place gitdeck spawns processes. A non-zero exit is data, not an
    exception: callers decide with `CommandResult.check()` whether it is fatal.

    Attributes:
        executable (str): The program prepended to every argv (e.g. 'git').
        timeout (float | None): Seconds before a command is killed.
    """

    def __init__(self, executable: str = "git", timeout: float | None = None):
        self.executable = executable
        self.timeout = timeout

    def run(
        self,
        args: list[str],
        cwd: Path | None = None,
        input: str | None = None,
        env: dict | None = None,
    ) -> CommandResult:
        """Runs `executable *args` in `cwd`.

        Args:
            args (list[str]): Arguments passed after the executable.
            cwd (Path | None): Working directory. Defaults to the process cwd.
            input (str | None): Text written to the process stdin.
            env (dict | None): Full environment for the subprocess.

        Returns:
            CommandResult: The exit status and captured streams.
        """
        argv = [self.executable, *args]
        started = time.monotonic()
        try:
            proc = subprocess.run(
                argv,
                cwd=cwd,
                input=input,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                env=env,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            logger.error(f"Executable not found: {self.executable}")
            return CommandResult(argv, 127, "", str(e))
        except subprocess.TimeoutExpired:
            logger.warning(f"Timed out after {self.timeout}s: {' '.join(argv)}")
            return CommandResult(argv, -1, "", f"timed out after {self.timeout}s")

        elapsed_ms = (time.monotonic() - started) * 1000
        logger.debug(f"{' '.join(argv)} -> {proc.returncode} ({elapsed_ms:.0f}ms)")
        return CommandResult(
            argv, proc.returncode, proc.stdout or "", proc.stderr or ""
        )
