"""
Backup engine - turns an element into a local artifact, and back.
"""

import logging
import os
from datetime import datetime
from typing import List, Optional

from dumpvault.models import ConfigurationError, Element
from .process import Command, CommandError, execute, execute_all
from .targets import command_for

logger = logging.getLogger(__name__)


class BackupError(Exception):
    """Raised when an element's artifact could not be produced."""
    pass


class RestoreError(Exception):
    """Raised when an artifact could not be loaded back into its source."""
    pass


def perform_backup(
    element: Element,
    staging_dir: str,
    timeout: Optional[float] = None,
    now: Optional[datetime] = None
) -> str:
    """
    Produce a backup artifact for an element.

    All commands of one backup share a single timestamp. The artifact is only
    reported when every command succeeded; a partially written file is removed.
    The target's cleanup commands run afterwards in either case.
    An external tool exiting 0 after writing an empty file is not detected.

    Args:
        element: Element to back up
        staging_dir: Existing directory the artifact is written to
        timeout: Per-command timeout in seconds (None waits forever)
        now: Timestamp override

    Returns:
        Path to the artifact

    Raises:
        ConfigurationError: If the element has no backup target
        BackupError: If any command fails or cannot be started
    """
    if element.target is None:
        raise ConfigurationError(f"No backup target configured for element '{element.title}'")

    timestamp = now or datetime.now()
    plan = command_for(element.target, element.title, timestamp, staging_dir)

    logger.info(f"[{element.title}] Backing up {element.target.describe()}")

    failure = None
    for command in plan.commands:
        logger.debug(f"[{element.title}] Running: {command.display()}")
        outcome = execute(command, timeout=timeout)

        if not outcome.ok:
            failure = (command, outcome)
            break

    _run_cleanup(element.title, plan.cleanup, timeout)

    if failure is not None:
        command, outcome = failure
        _remove_partial(plan.artifact_path)
        raise BackupError(
            f"Backup of '{element.title}' failed at {command.program}: {outcome.describe()}"
        )

    logger.info(f"[{element.title}] Artifact created: {os.path.basename(plan.artifact_path)}")
    return plan.artifact_path


def perform_restore(element: Element, artifact_path: str, timeout: Optional[float] = None) -> None:
    """
    Load a downloaded artifact back into the element's data source.

    Args:
        element: Element being restored
        artifact_path: Local artifact to restore from
        timeout: Per-command timeout in seconds (None waits forever)

    Raises:
        ConfigurationError: If the element has no backup target
        RestoreError: If any restore command fails
    """
    if element.target is None:
        raise ConfigurationError(f"No backup target configured for element '{element.title}'")

    if not os.path.isfile(artifact_path):
        raise RestoreError(f"Artifact not found for '{element.title}': {artifact_path}")

    commands = element.target.restore_commands(artifact_path)
    logger.info(f"[{element.title}] Restoring {element.target.describe()} from {os.path.basename(artifact_path)}")

    try:
        execute_all(commands, timeout=timeout)
    except CommandError as e:
        raise RestoreError(f"Restore of '{element.title}' failed at {e.command.program}: {e.outcome.describe()}")
    finally:
        _run_cleanup(element.title, element.target.cleanup_commands(artifact_path), timeout)

    logger.info(f"[{element.title}] Restore completed")


def _run_cleanup(title: str, commands: List[Command], timeout: Optional[float]):
    for command in commands:
        outcome = execute(command, timeout=timeout)
        if not outcome.ok:
            logger.warning(f"[{title}] Cleanup step {command.display()} failed: {outcome.describe()}")


def _remove_partial(path: str):
    if os.path.exists(path):
        try:
            os.remove(path)
        except OSError as e:
            logger.warning(f"Failed to remove partial artifact {path}: {e}")
