"""
External command execution for backup and restore operations.

Commands are plain argument vectors (never a shell string). Secrets travel
through environment variables where the tool supports it, and are masked
whenever a command is rendered for logging.
"""

import os
import subprocess
from contextlib import ExitStack
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple


class CommandError(Exception):
    """Raised when an external command does not complete successfully."""

    def __init__(self, command: 'Command', outcome: 'CommandOutcome'):
        self.command = command
        self.outcome = outcome
        super().__init__(f"{command.display()}: {outcome.describe()}")


@dataclass(frozen=True)
class Command:
    """
    A single external program invocation.

    Attributes:
        argv: Program and arguments
        env: Extra environment variables merged over the current environment
        stdin_path: File fed to the program's standard input
        stdout_path: File receiving the program's standard output
        secrets: Values masked by display()
    """
    argv: Tuple[str, ...]
    env: Dict[str, str] = field(default_factory=dict)
    stdin_path: Optional[str] = None
    stdout_path: Optional[str] = None
    secrets: Tuple[str, ...] = ()

    @property
    def program(self) -> str:
        return self.argv[0]

    def display(self) -> str:
        """Render the command for logs with secrets masked."""
        masked = []
        for arg in self.argv:
            for secret in self.secrets:
                if secret:
                    arg = arg.replace(secret, '****')
            masked.append(arg)

        rendered = ' '.join(masked)
        if self.stdin_path:
            rendered += f" < {self.stdin_path}"
        if self.stdout_path:
            rendered += f" > {self.stdout_path}"
        return rendered

    def build_env(self) -> Dict[str, str]:
        env = os.environ.copy()
        env.update(self.env)
        return env


class OutcomeStatus(Enum):
    SUCCESS = 'success'
    FAILED = 'failed'
    SPAWN_ERROR = 'spawn_error'


@dataclass(frozen=True)
class CommandOutcome:
    """
    Result of running a Command.

    FAILED carries the exit code (None on timeout) and captured stderr;
    SPAWN_ERROR carries the exception that prevented the process from starting.
    """
    status: OutcomeStatus
    returncode: Optional[int] = None
    stderr: str = ''
    cause: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.SUCCESS

    def describe(self) -> str:
        if self.status is OutcomeStatus.SUCCESS:
            return 'succeeded'
        if self.status is OutcomeStatus.SPAWN_ERROR:
            return f"could not be started: {self.cause}"

        exit_info = f"exit code {self.returncode}" if self.returncode is not None else 'no exit code'
        stderr = self.stderr.strip()
        if stderr:
            return f"failed ({exit_info}): {stderr[:500]}"
        return f"failed ({exit_info})"


def execute(command: Command, timeout: Optional[float] = None) -> CommandOutcome:
    """
    Run a command and classify its outcome.

    A non-zero exit status or a program that cannot be launched is reported
    through the returned outcome, never raised.

    Args:
        command: Command to run
        timeout: Seconds to wait before killing the process (None waits forever)

    Returns:
        CommandOutcome describing the result
    """
    try:
        with ExitStack() as stack:
            stdin = subprocess.DEVNULL
            stdout = subprocess.DEVNULL
            if command.stdin_path:
                stdin = stack.enter_context(open(command.stdin_path, 'rb'))
            if command.stdout_path:
                stdout = stack.enter_context(open(command.stdout_path, 'wb'))

            result = subprocess.run(
                list(command.argv),
                stdin=stdin,
                stdout=stdout,
                stderr=subprocess.PIPE,
                env=command.build_env(),
                timeout=timeout,
            )
    except subprocess.TimeoutExpired:
        return CommandOutcome(
            status=OutcomeStatus.FAILED,
            stderr=f"timed out after {timeout}s",
        )
    except OSError as e:
        # Missing executable, unreadable stdin file or unwritable stdout file
        return CommandOutcome(status=OutcomeStatus.SPAWN_ERROR, cause=e)

    stderr = (result.stderr or b'').decode('utf-8', errors='replace')
    if result.returncode == 0:
        return CommandOutcome(status=OutcomeStatus.SUCCESS, returncode=0, stderr=stderr)
    return CommandOutcome(status=OutcomeStatus.FAILED, returncode=result.returncode, stderr=stderr)


def execute_all(commands: List[Command], timeout: Optional[float] = None) -> None:
    """
    Run commands in order, stopping at the first unsuccessful one.

    Raises:
        CommandError: If any command fails or cannot be started
    """
    for command in commands:
        outcome = execute(command, timeout=timeout)
        if not outcome.ok:
            raise CommandError(command, outcome)
