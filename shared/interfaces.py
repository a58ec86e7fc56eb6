"""Interfaces of the note source and note sink collaborators."""

from typing import Dict, Iterable, List, Optional, Protocol

from shared.models import Note


class NoteSource(Protocol):
    """Read-only access to the note application's store."""

    def list_notes(self) -> List[Note]:
        ...

    def get_note(self, uuid: str) -> Optional[Note]:
        ...


class NoteSink(Protocol):
    """Write access through the note application's automation facility.

    Every call may raise shared.errors.AutomationError. Callers do not retry.
    """

    def create_note(self, title: str, html_body: str, folder: str) -> str:
        ...

    def update_note(self, title: str, html_body: str, folder: str) -> None:
        ...

    def note_exists(self, title: str, folder: str) -> bool:
        ...

    def create_folder(self, name: str) -> None:
        ...

    def folder_exists(self, name: str) -> bool:
        ...


class InMemoryNoteSource:
    """A NoteSource over a dict, for wiring and tests."""

    def __init__(self, notes: Optional[Iterable[Note]] = None):
        self.notes: Dict[str, Note] = {note.uuid: note for note in notes or []}

    def list_notes(self) -> List[Note]:
        return list(self.notes.values())

    def get_note(self, uuid: str) -> Optional[Note]:
        return self.notes.get(uuid)

    def put(self, note: Note) -> None:
        self.notes[note.uuid] = note

    def remove(self, uuid: str) -> None:
        self.notes.pop(uuid, None)
