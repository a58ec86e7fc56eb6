"""Three-way reconciliation between a local Markdown tree and a note folder."""

import logging
import os
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Set

from shared.config import get_state_database_url, get_sync_config
from shared.db_operations import DatabaseOperations
from shared.errors import NotFoundError, NotesCoreError, ReconciliationError
from shared.interfaces import NoteSink, NoteSource
from shared.models import (
    ActionResult, Note, SyncAction, SyncActionKind, SyncReport, SyncStatus, content_hash
)
from shared.notifications import NotificationService
from services.note_decoder.decoder import NoteDecoder, empty_content
from services.sync_engine.note_files import (
    LocalFile, format_note_file, markdown_to_html, read_local_file, scan_local_files,
    write_local_file
)

logger = logging.getLogger(__name__)

# Status recorded for a path while an action of this kind is pending.
PENDING_STATUS = {
    SyncActionKind.PUSH: SyncStatus.LOCAL_MODIFIED,
    SyncActionKind.PULL: SyncStatus.REMOTE_MODIFIED,
    SyncActionKind.CREATE_REMOTE: SyncStatus.NEW_LOCAL,
    SyncActionKind.CREATE_LOCAL: SyncStatus.NEW_REMOTE,
    SyncActionKind.CONFLICT: SyncStatus.CONFLICT,
    SyncActionKind.DELETED_LOCALLY: SyncStatus.DELETED_LOCAL,
    SyncActionKind.DELETED_REMOTELY: SyncStatus.DELETED_REMOTE,
}


@dataclass
class RemoteNote:
    """A remote note with its decoded Markdown and plaintext hash."""
    note: Note
    markdown: str
    hash: str


class SyncEngine:
    """Plans and executes reconciliation of one local directory with one folder.

    Hashes are SHA-256 of the note body: the decoded plaintext on the remote
    side and the file body without frontmatter and title heading locally.
    A local deletion only untracks the file; a remote deletion removes it.
    """

    def __init__(
        self,
        source: NoteSource,
        sink: NoteSink,
        db_ops: Optional[DatabaseOperations] = None,
        folder: Optional[str] = None,
        extension: Optional[str] = None,
        force_local: bool = False,
        force_remote: bool = False,
        decoder: Optional[NoteDecoder] = None,
        converter: Callable[[str], str] = markdown_to_html,
        notification_service: Optional[NotificationService] = None
    ):
        """
        Initialize the sync engine.

        Args:
            source: Read access to notes
            sink: Write access to notes through the automation facility
            db_ops: Database holding the sync state and sync log tables, defaults to CIDER_DATABASE_URL
            folder: Remote folder to sync with, defaults to CIDER_FOLDER
            extension: Extension of local note files, defaults to CIDER_EXTENSION
            force_local: Resolve conflicts by pushing the local file
            force_remote: Resolve conflicts by pulling the remote note
            decoder: Note payload decoder
            converter: Markdown to HTML conversion used for pushes
            notification_service: Notified when a run has failed actions
        """
        if force_local and force_remote:
            raise ValueError("force_local and force_remote are mutually exclusive")

        self.source = source
        self.sink = sink
        config = get_sync_config()
        if db_ops is None:
            db_ops = DatabaseOperations(get_state_database_url())
            db_ops.create_tables()
        self.db_ops = db_ops
        self.folder = folder or config["folder"]
        self.extension = (extension or config["extension"]).lstrip(".")
        self.force_local = force_local
        self.force_remote = force_remote
        self.decoder = decoder or NoteDecoder()
        self.converter = converter
        self.notification_service = notification_service or NotificationService()
        self.local_dir: Optional[str] = None
        self.remote_folder = self.folder

    # Planning

    def plan(self, local_dir: str, remote_folder: Optional[str] = None) -> List[SyncAction]:
        """
        Compare local files, remote notes and the last synced state.

        Args:
            local_dir: Root of the local mirror
            remote_folder: Folder to compare against, defaults to the engine's

        Returns:
            Actions ordered by local path, then remote creations, then deletions
        """
        folder = remote_folder or self.folder
        self.local_dir = local_dir
        self.remote_folder = folder

        local_files = scan_local_files(local_dir, self.extension) if os.path.isdir(local_dir) else {}
        remote_notes, unavailable = self._fetch_remote(folder)
        states = {state.local_path: state for state in self.db_ops.get_all_sync_states()}

        bindings = self._bind_untracked(states, remote_notes)
        bound_uuids = {uuid for uuid in bindings.values() if uuid}

        updates: List[SyncAction] = []
        deletions: List[SyncAction] = []

        for path, local in sorted(local_files.items()):
            state = states.get(path)
            if state is None:
                updates.append(SyncAction(
                    kind=SyncActionKind.CREATE_REMOTE,
                    local_path=path,
                    title=local.title,
                    local_hash=local.hash
                ))
                continue

            note_uuid = bindings.get(path)
            remote = remote_notes.get(note_uuid) if note_uuid else None
            if note_uuid is None:
                # Not yet observable remotely: only local edits can be acted on.
                if local.hash != state.local_hash:
                    updates.append(SyncAction(
                        kind=SyncActionKind.PUSH,
                        local_path=path,
                        title=local.title,
                        local_hash=local.hash
                    ))
                continue
            if remote is None:
                if note_uuid not in unavailable:
                    deletions.append(SyncAction(
                        kind=SyncActionKind.DELETED_REMOTELY,
                        local_path=path,
                        note_uuid=note_uuid,
                        title=local.title,
                        local_hash=local.hash
                    ))
                continue

            kind = self._classify(
                local_changed=local.hash != state.local_hash,
                remote_changed=remote.hash != state.remote_hash
            )
            if kind is not None:
                updates.append(SyncAction(
                    kind=kind,
                    local_path=path,
                    note_uuid=note_uuid,
                    title=local.title,
                    local_hash=local.hash,
                    remote_hash=remote.hash
                ))

        for path, state in sorted(states.items()):
            if path not in local_files:
                deletions.append(SyncAction(
                    kind=SyncActionKind.DELETED_LOCALLY,
                    local_path=path,
                    note_uuid=bindings.get(path),
                    local_hash=state.local_hash,
                    remote_hash=state.remote_hash
                ))

        # Untracked local files adopt remote notes with their title on creation
        adopting = {local.title for path, local in local_files.items() if path not in states}

        creations: List[SyncAction] = []
        taken: Set[str] = set()
        for uuid, remote in sorted(remote_notes.items()):
            if uuid in bound_uuids or remote.note.display_title in adopting:
                continue
            path = self.expected_path(remote.note)
            if path in local_files or path in states:
                continue
            suffix = 2
            while path in taken or path in local_files or path in states:
                # Same title as another note pulled in this run
                path = f"{remote.note.safe_filename} ({suffix}).{self.extension}"
                suffix += 1
            taken.add(path)
            creations.append(SyncAction(
                kind=SyncActionKind.CREATE_LOCAL,
                local_path=path,
                note_uuid=uuid,
                title=remote.note.display_title,
                remote_hash=remote.hash
            ))
        creations.sort(key=lambda action: (action.local_path, action.note_uuid))

        deletions.sort(key=lambda action: action.local_path)
        return updates + creations + deletions

    def _classify(self, local_changed: bool, remote_changed: bool) -> Optional[SyncActionKind]:
        if local_changed and remote_changed:
            if self.force_local:
                return SyncActionKind.PUSH
            if self.force_remote:
                return SyncActionKind.PULL
            return SyncActionKind.CONFLICT
        if local_changed:
            return SyncActionKind.PUSH
        if remote_changed:
            return SyncActionKind.PULL
        return None

    def expected_path(self, note: Note) -> str:
        """Local path a remote note is written to when first pulled."""
        return f"{note.safe_filename}.{self.extension}"

    def _fetch_remote(self, folder: str):
        """Decode the notes of a folder.

        Returns remote notes by UUID plus the UUIDs that exist but cannot be
        compared (locked or undecodable). Those are never treated as deleted.
        """
        remote: Dict[str, RemoteNote] = {}
        unavailable: Set[str] = set()

        for note in self.source.list_notes():
            if note.folder_path != folder:
                continue
            if note.is_locked:
                unavailable.add(note.uuid)
                continue
            try:
                remote[note.uuid] = self._snapshot(note)
            except NotesCoreError as e:
                logger.warning(f"Skipping undecodable note {note.uuid}: {e}")
                unavailable.add(note.uuid)

        return remote, unavailable

    def _snapshot(self, note: Note) -> RemoteNote:
        if note.raw_payload:
            content = self.decoder.decode(note.raw_payload)
        else:
            content = empty_content()
        return RemoteNote(
            note=note,
            markdown=content.markdown,
            hash=content_hash(content.plaintext.strip())
        )

    def _bind_untracked(self, states, remote_notes: Dict[str, RemoteNote]) -> Dict[str, Optional[str]]:
        """Resolve the note UUID of each tracked path.

        Rows written before the remote note was observable carry no UUID;
        they are bound to an unclaimed remote note with the same title.
        """
        bindings = {path: state.note_uuid for path, state in states.items()}
        claimed = {uuid for uuid in bindings.values() if uuid}

        for path, state in sorted(states.items()):
            if state.note_uuid:
                continue
            title = self._tracked_title(path)
            for uuid, remote in sorted(remote_notes.items()):
                if uuid not in claimed and remote.note.display_title == title:
                    bindings[path] = uuid
                    claimed.add(uuid)
                    logger.debug(f"Bound {path} to note {uuid}")
                    break

        return bindings

    def _tracked_title(self, path: str) -> Optional[str]:
        if self.local_dir is None:
            return None
        try:
            return read_local_file(self.local_dir, path).title
        except (OSError, UnicodeDecodeError):
            return None

    # Execution

    def execute(self, action: SyncAction, local_dir: Optional[str] = None) -> ActionResult:
        """
        Perform one planned action and record its outcome.

        Args:
            action: Action returned by plan()
            local_dir: Root of the local mirror, defaults to the last planned one

        Returns:
            ActionResult with status success, conflict or failed
        """
        local_dir = local_dir or self.local_dir
        if local_dir is None:
            raise ValueError("No local directory: call plan() first or pass local_dir")

        if action.kind == SyncActionKind.CONFLICT:
            logger.warning(f"Conflict on {action.local_path}: both sides changed since last sync")
            result = ActionResult(action=action, status="conflict")
        else:
            try:
                self._perform(action, local_dir)
                result = ActionResult(action=action, status="success")
                logger.info(action.description)
            except Exception as e:
                logger.error(f"{action.description} failed: {e}", exc_info=True)
                result = ActionResult(action=action, status="failed", error=str(e))

        self.db_ops.add_sync_log(
            operation=action.kind.value,
            status=result.status,
            local_path=action.local_path,
            note_uuid=action.note_uuid,
            error_message=result.error
        )
        return result

    def _perform(self, action: SyncAction, local_dir: str):
        kind = action.kind
        folder = self.remote_folder
        if kind == SyncActionKind.PUSH:
            local = read_local_file(local_dir, action.local_path)
            self._call_sink(action, self.sink.update_note, local.title, self.converter(local.body), folder)
            self._record(local_dir, action.local_path, action.note_uuid or self._find_created_note(local))

        elif kind == SyncActionKind.CREATE_REMOTE:
            local = read_local_file(local_dir, action.local_path)
            html_body = self.converter(local.body)
            sink_id = None
            # An existing note of the same title is adopted rather than duplicated
            if self._call_sink(action, self.sink.note_exists, local.title, folder):
                self._call_sink(action, self.sink.update_note, local.title, html_body, folder)
            else:
                sink_id = self._call_sink(action, self.sink.create_note, local.title, html_body, folder)
            note_uuid = self._find_created_note(local)
            self._record(local_dir, action.local_path, note_uuid, sink_id)

        elif kind in (SyncActionKind.PULL, SyncActionKind.CREATE_LOCAL):
            note = self.source.get_note(action.note_uuid)
            if note is None:
                raise NotFoundError(f"Note {action.note_uuid} no longer exists")
            remote = self._snapshot(note)
            write_local_file(local_dir, action.local_path, format_note_file(
                title=note.display_title,
                body=remote.markdown,
                note_uuid=note.uuid,
                modified_at=note.modified_at
            ))
            self._record(local_dir, action.local_path, note.uuid)

        elif kind == SyncActionKind.DELETED_LOCALLY:
            self.db_ops.delete_sync_state(action.local_path)

        elif kind == SyncActionKind.DELETED_REMOTELY:
            full_path = os.path.join(local_dir, *action.local_path.split("/"))
            try:
                os.remove(full_path)
            except FileNotFoundError:
                logger.debug(f"{action.local_path} already removed")
            self.db_ops.delete_sync_state(action.local_path)

    def _call_sink(self, action: SyncAction, operation, *args):
        try:
            return operation(*args)
        except ReconciliationError:
            raise
        except Exception as e:
            raise ReconciliationError(
                f"{getattr(operation, '__name__', 'sink call')} failed for {action.local_path}: {e}",
                local_path=action.local_path
            ) from e

    def _find_created_note(self, local: LocalFile) -> Optional[str]:
        """UUID of the note a push created, if the source already shows it."""
        claimed = {state.note_uuid for state in self.db_ops.get_all_sync_states() if state.note_uuid}
        for note in sorted(self.source.list_notes(), key=lambda n: n.uuid):
            if (note.folder_path == self.remote_folder and note.uuid not in claimed
                    and note.display_title == local.title):
                return note.uuid
        return None

    def _record(
        self,
        local_dir: str,
        local_path: str,
        note_uuid: Optional[str],
        sink_id: Optional[str] = None
    ):
        """Write a synced state row from hashes recomputed after the side effect."""
        local_hash = read_local_file(local_dir, local_path).hash

        remote_hash = None
        if note_uuid:
            note = self.source.get_note(note_uuid)
            if note is not None and not note.is_locked:
                remote_hash = self._snapshot(note).hash

        if sink_id is None:
            existing = self.db_ops.get_sync_state(local_path)
            sink_id = existing.note_id if existing else None

        self.db_ops.upsert_sync_state(
            local_path=local_path,
            folder_path=self.remote_folder,
            note_uuid=note_uuid,
            note_id=sink_id,
            local_hash=local_hash,
            remote_hash=remote_hash,
            sync_status=SyncStatus.SYNCED.value
        )

    # Runs

    def ensure_folder(self):
        """Create the remote folder if it does not exist."""
        try:
            if not self.sink.folder_exists(self.folder):
                logger.info(f"Creating folder '{self.folder}'")
                self.sink.create_folder(self.folder)
        except ReconciliationError:
            raise
        except Exception as e:
            raise ReconciliationError(f"Could not prepare folder '{self.folder}': {e}") from e

    def run(self, local_dir: str, dry_run: bool = False) -> SyncReport:
        """
        Plan and execute a full sync.

        Actions run sequentially; a failed action is counted and the
        remaining actions still run.

        Args:
            local_dir: Root of the local mirror
            dry_run: Plan only, touching neither side

        Returns:
            SyncReport with per-action results
        """
        if not dry_run:
            self.ensure_folder()
            os.makedirs(local_dir, exist_ok=True)

        actions = self.plan(local_dir)
        report = SyncReport(planned=len(actions))
        logger.info(f"Planned {len(actions)} sync actions for '{self.folder}'")

        if dry_run:
            for action in actions:
                logger.info(f"[dry run] {action.description}")
            return report

        for action in actions:
            result = self.execute(action, local_dir)
            report.results.append(result)
            if result.status == "success":
                report.completed += 1
            elif result.status == "conflict":
                report.conflicts += 1
            else:
                report.errored += 1

        logger.info(
            f"Sync complete: {report.completed} done, {report.conflicts} conflicts, "
            f"{report.errored} errors"
        )
        if report.errored:
            self.notification_service.send_critical_error_notification(
                source="sync",
                error_message=f"{report.errored} sync actions failed",
                context={
                    "folder": self.folder,
                    "failed": [r.action.local_path for r in report.results if r.status == "failed"],
                }
            )
        return report

    def status(self, local_dir: str) -> Dict[str, List[str]]:
        """
        Pending changes grouped by status, without executing anything.

        Returns:
            Dictionary of SyncStatus value to local paths
        """
        grouped: Dict[str, List[str]] = defaultdict(list)
        for action in self.plan(local_dir):
            grouped[PENDING_STATUS[action.kind].value].append(action.local_path)
        return dict(grouped)
