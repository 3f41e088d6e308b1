"""
Backup executor - sequences the backup and restore batches.

Backup workflow, per element in configuration order:
1. Ensure the staging directory exists
2. Produce the artifact
3. Upload it to the object store
4. Sweep outdated local artifacts
5. Sweep outdated remote objects

Restore workflow, per selected element:
1. Download the latest object of the element's folder
2. Run the target's restore commands

Each element is isolated: its failure is logged and recorded in its
ElementResult, and the batch moves on to the next element.
"""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional

from dumpvault.models import ConfigurationError, Element, Settings
from .engine import BackupError, RestoreError, perform_backup, perform_restore
from .retention import RetentionError, sweep_local
from .storage import S3Storage, StorageError

logger = logging.getLogger(__name__)


class ElementState(Enum):
    PENDING = 'pending'
    BACKING_UP = 'backing_up'
    UPLOADING = 'uploading'
    SWEEPING_LOCAL = 'sweeping_local'
    SWEEPING_REMOTE = 'sweeping_remote'
    DOWNLOADING = 'downloading'
    RESTORING = 'restoring'
    DONE = 'done'
    FAILED = 'failed'


@dataclass
class ElementResult:
    """Outcome of one element within one batch run."""
    title: str
    state: ElementState = ElementState.PENDING
    history: List[ElementState] = field(default_factory=lambda: [ElementState.PENDING])
    artifact_path: Optional[str] = None
    remote_key: Optional[str] = None
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state is ElementState.DONE

    def advance(self, state: ElementState):
        if self.state is ElementState.FAILED:
            raise RuntimeError(f"Element '{self.title}' already failed")
        self.state = state
        self.history.append(state)

    def fail(self, reason: str):
        self.advance(ElementState.FAILED)
        self.error = reason


def select_elements(elements: List[Element], titles: Optional[Iterable[str]] = None) -> List[Element]:
    """
    Pick the elements to restore.

    Args:
        elements: Configured elements
        titles: Titles to keep; None or empty selects every element

    Returns:
        Selected elements, in configuration order

    Raises:
        ConfigurationError: If titles were given and none matches
    """
    wanted = list(titles or [])
    if not wanted:
        return list(elements)

    selected = [element for element in elements if element.title in wanted]
    if not selected:
        raise ConfigurationError(f"No matching elements found for the provided arguments: {wanted}")

    unknown = [title for title in wanted if title not in {e.title for e in selected}]
    if unknown:
        logger.warning(f"Ignoring unknown element title(s): {', '.join(unknown)}")

    return selected


def summarize(results: List[ElementResult]) -> str:
    succeeded = sum(1 for r in results if r.succeeded)
    return f"{succeeded} succeeded, {len(results) - succeeded} failed"


class BackupExecutor:
    """
    Runs the backup or restore batch over every configured element.
    """

    def __init__(self, settings: Settings, storage: S3Storage, command_timeout: Optional[float] = None):
        """
        Initialize backup executor.

        Args:
            settings: Loaded settings
            storage: Gateway to the object store, shared by every element
            command_timeout: Per-command timeout; defaults to settings.command_timeout
        """
        self.settings = settings
        self.storage = storage
        self.command_timeout = command_timeout if command_timeout is not None else settings.command_timeout

    def run_backup(self) -> List[ElementResult]:
        """Back up every element, in order. Never raises for an element failure."""
        logger.info(f"Starting backup of {len(self.settings.elements)} element(s)")

        results = [self.backup_element(element) for element in self.settings.elements]

        logger.info(f"Backup batch complete: {summarize(results)}")
        return results

    def backup_element(self, element: Element) -> ElementResult:
        result = ElementResult(title=element.title)
        try:
            return self._backup_workflow(element, result)
        except Exception as e:
            return self._crash(result, e)

    def _backup_workflow(self, element: Element, result: ElementResult) -> ElementResult:
        staging_dir = self.settings.staging_dir_for(element)

        if not os.path.isdir(staging_dir):
            try:
                os.makedirs(staging_dir, exist_ok=True)
            except OSError as e:
                return self._fail(result, f"Failed to create backup dir {staging_dir}: {e}")
            logger.info(f"Created backup dir {staging_dir}")

        result.advance(ElementState.BACKING_UP)
        try:
            result.artifact_path = perform_backup(element, staging_dir, timeout=self.command_timeout)
        except (ConfigurationError, BackupError) as e:
            return self._fail(result, str(e))

        result.advance(ElementState.UPLOADING)
        try:
            result.remote_key = self.storage.upload(result.artifact_path, element.remote_folder)
        except StorageError as e:
            # Sweeping without a confirmed upload could remove the only good copies
            return self._fail(result, f"Failed to upload file to S3: {e}")

        result.advance(ElementState.SWEEPING_LOCAL)
        try:
            sweep_local(staging_dir, element.title, element.local_retention_days)
        except RetentionError as e:
            self._warn(result, f"Failed to delete outdated local backups: {e}")

        result.advance(ElementState.SWEEPING_REMOTE)
        try:
            self.storage.sweep(element.remote_folder, element.remote_retention_days)
        except StorageError as e:
            self._warn(result, f"Failed to delete outdated backups from S3: {e}")

        result.advance(ElementState.DONE)
        logger.info(f"[{element.title}] Backup completed")
        return result

    def run_restore(self, titles: Optional[Iterable[str]] = None) -> List[ElementResult]:
        """
        Restore every element, or only those whose title is listed.

        Raises:
            ConfigurationError: If titles were given and none matches; nothing is downloaded
        """
        elements = select_elements(self.settings.elements, titles)
        logger.info(f"Starting restore of {len(elements)} element(s)")

        results = [self.restore_element(element) for element in elements]

        logger.info(f"Restore batch complete: {summarize(results)}")
        return results

    def restore_element(self, element: Element) -> ElementResult:
        result = ElementResult(title=element.title)
        try:
            return self._restore_workflow(element, result)
        except Exception as e:
            return self._crash(result, e)

    def _restore_workflow(self, element: Element, result: ElementResult) -> ElementResult:
        if element.target is None:
            return self._fail(result, f"No backup target configured for element '{element.title}'")

        result.advance(ElementState.DOWNLOADING)
        try:
            result.artifact_path = self.storage.download(element.remote_folder, self.settings.restore_dir)
        except StorageError as e:
            return self._fail(result, f"Failed to download backup: {e}")

        result.advance(ElementState.RESTORING)
        try:
            perform_restore(element, result.artifact_path, timeout=self.command_timeout)
        except (ConfigurationError, RestoreError) as e:
            return self._fail(result, str(e))

        result.advance(ElementState.DONE)
        return result

    def _fail(self, result: ElementResult, reason: str) -> ElementResult:
        logger.error(f"[{result.title}] {reason}")
        result.fail(reason)
        return result

    def _crash(self, result: ElementResult, error: Exception) -> ElementResult:
        logger.exception(f"[{result.title}] Unexpected error in state {result.state.value}: {error}")
        if result.state is not ElementState.FAILED:
            result.fail(f"Unexpected error: {error}")
        return result

    def _warn(self, result: ElementResult, message: str):
        logger.error(f"[{result.title}] {message}")
        result.warnings.append(message)
