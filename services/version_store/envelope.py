"""Versioned envelope persisted for every captured note version."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from shared.models import DecodedContent

ENVELOPE_FORMAT_VERSION = 1


class VersionContentData(BaseModel):
    """Rendered forms of the note body."""
    plaintext: str
    markdown: str = ""
    html: Optional[str] = None


class VersionMetadata(BaseModel):
    """Counts and flags derived from the note body."""
    character_count: int = 0
    word_count: int = 0
    has_embedded_objects: bool = False
    is_password_protected: bool = False


class VersionEnvelope(BaseModel):
    """Snapshot of one note at one point in time."""
    version: int = Field(default=ENVELOPE_FORMAT_VERSION)
    note_uuid: str
    title: str
    folder_path: Optional[str] = None
    captured_at: datetime
    source_modified_at: Optional[datetime] = None
    content: VersionContentData
    metadata: VersionMetadata

    @classmethod
    def build(
        cls,
        note_uuid: str,
        title: str,
        folder_path: Optional[str],
        captured_at: datetime,
        source_modified_at: Optional[datetime],
        content: DecodedContent
    ) -> "VersionEnvelope":
        """Create an envelope from decoded content."""
        plaintext = content.plaintext
        return cls(
            note_uuid=note_uuid,
            title=title,
            folder_path=folder_path,
            captured_at=captured_at,
            source_modified_at=source_modified_at,
            content=VersionContentData(
                plaintext=plaintext,
                markdown=content.markdown,
                html=content.html
            ),
            metadata=VersionMetadata(
                character_count=len(plaintext),
                word_count=len(plaintext.split()),
                has_embedded_objects=content.has_embedded_objects
            )
        )
