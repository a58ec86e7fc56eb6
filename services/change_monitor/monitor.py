"""Change monitor: polls the note source and records new versions."""

import logging
import threading
import time
from typing import Optional

from shared.config import get_monitor_config
from shared.db_operations import DatabaseOperations
from shared.interfaces import NoteSource
from shared.models import CheckResult, Note, content_hash
from shared.notifications import NotificationService
from services.note_decoder.decoder import NoteDecoder, empty_content
from services.version_store.store import VersionStore

logger = logging.getLogger(__name__)


class ChangeMonitor:
    """Detects created, changed and deleted notes by content hash.

    Source modification times are recorded but never trusted for change
    detection.
    """

    def __init__(
        self,
        source: NoteSource,
        store: VersionStore,
        db_ops: Optional[DatabaseOperations] = None,
        decoder: Optional[NoteDecoder] = None,
        keep_versions: Optional[int] = None,
        notification_service: Optional[NotificationService] = None
    ):
        """
        Initialize the change monitor.

        Args:
            source: Read-only note source
            store: Version store that persists changes
            db_ops: Database holding the monitor state table, defaults to the store's
            decoder: Note payload decoder
            keep_versions: Retention applied after each save, defaults to PICKLE_KEEP_VERSIONS
            notification_service: Notified when a whole check fails
        """
        self.source = source
        self.store = store
        self.db_ops = db_ops or store.db_ops
        self.decoder = decoder or NoteDecoder()
        self.config = get_monitor_config()
        self.keep_versions = keep_versions if keep_versions is not None else self.config["keep_versions"]
        self.notification_service = notification_service or NotificationService()
        self._check_lock = threading.Lock()
        self.last_result: Optional[CheckResult] = None

    def check_once(self) -> Optional[CheckResult]:
        """
        Run one pass over the note source.

        Returns:
            CheckResult with counts, or None if another check is still running
        """
        if not self._check_lock.acquire(blocking=False):
            logger.debug("Check already in progress, skipping this tick")
            return None
        try:
            result = self._check()
            self.last_result = result
            return result
        finally:
            self._check_lock.release()

    def _check(self) -> CheckResult:
        start_time = time.monotonic()
        result = CheckResult()

        current_notes = self.source.list_notes()
        current_uuids = {note.uuid for note in current_notes}
        known_states = {state.note_uuid: state for state in self.db_ops.get_all_monitor_states()}
        tombstoned = {
            record.uuid for record in self.db_ops.get_all_notes(include_deleted=True) if record.is_deleted
        }

        for note in current_notes:
            if note.is_locked:
                result.skipped += 1
                continue

            try:
                self._process_note(note, known_states.get(note.uuid), note.uuid in tombstoned, result)
            except Exception as e:
                logger.error(f"Error processing note {note.uuid}: {e}", exc_info=True)
                result.errored += 1

        for uuid in known_states:
            if uuid in current_uuids:
                continue
            if self.db_ops.mark_note_deleted(uuid):
                result.deleted += 1
                logger.info(f"Deleted: {uuid}")

        elapsed = time.monotonic() - start_time
        message = (
            f"Check complete: {len(current_notes)} notes, {result.changed} changed, "
            f"{result.created} new, {result.deleted} deleted, {result.errored} errors ({elapsed:.2f}s)"
        )
        if result.has_changes or result.errored:
            logger.info(message)
        else:
            logger.debug(message)
        return result

    def _process_note(self, note: Note, known, tombstoned: bool, result: CheckResult):
        if note.raw_payload:
            content = self.decoder.decode(note.raw_payload)
        else:
            content = empty_content()

        current_hash = content_hash(content.plaintext)
        if known is not None and known.last_hash == current_hash:
            if tombstoned:
                self.db_ops.get_or_create_note(note.uuid, note.display_title, note.folder_path)
                logger.info(f"Restored: {note.display_title}")
            return

        self.store.save_version(
            note.uuid,
            content,
            source_modified_at=note.modified_at,
            title=note.display_title,
            folder_path=note.folder_path
        )
        self.db_ops.upsert_monitor_state(note.uuid, current_hash, note.modified_at)

        if self.keep_versions is not None:
            self.store.prune(note.uuid, self.keep_versions)

        if known is None:
            result.created += 1
            logger.info(f"New: {note.display_title}")
        else:
            result.changed += 1
            logger.info(f"Changed: {note.display_title}")

    def run(
        self,
        interval: Optional[float] = None,
        stop_event: Optional[threading.Event] = None,
        max_iterations: Optional[int] = None
    ):
        """
        Check on a fixed interval until stopped.

        Args:
            interval: Seconds between checks, defaults to PICKLE_INTERVAL
            stop_event: Set to stop the loop
            max_iterations: Stop after this many checks
        """
        if interval is None:
            interval = self.config["interval"]
        stop_event = stop_event or threading.Event()
        iterations = 0
        logger.info(f"Monitor started, interval {interval}s")

        while not stop_event.is_set():
            try:
                self.check_once()
            except Exception as e:
                logger.error(f"Check failed: {e}", exc_info=True)
                self.notification_service.send_critical_error_notification(
                    source="monitor",
                    error_message=str(e),
                    context={"stage": "check_once"}
                )

            iterations += 1
            if max_iterations is not None and iterations >= max_iterations:
                break
            stop_event.wait(interval)

        logger.info("Monitor stopped")
