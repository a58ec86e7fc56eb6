"""Decoder for the note application's compressed binary note bodies."""

import logging
import unicodedata
import zlib
from dataclasses import dataclass
from typing import List, Optional, Tuple

from shared.config import get_decoder_field_numbers
from shared.errors import FormatError
from shared.models import AttributeRun, DecodedContent, FontWeight, ParagraphStyle
from services.note_decoder.renderer import (
    apply_runs, render_html, render_markdown, render_plaintext_html
)
from services.note_decoder.wire import WIRE_LENGTH_DELIMITED, WIRE_VARINT, iter_fields

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"
GZIP_HEADER_SIZE = 10
GZIP_TRAILER_SIZE = 8

FHCRC = 0x02
FEXTRA = 0x04
FNAME = 0x08
FCOMMENT = 0x10

OBJECT_REPLACEMENT_CHARACTER = "\ufffc"
MAX_DEPTH = 32
MIN_FALLBACK_RUN = 3

STYLE_TYPES = {
    0: ParagraphStyle.TITLE,
    1: ParagraphStyle.HEADING,
    2: ParagraphStyle.SUBHEADING,
    4: ParagraphStyle.MONOSPACE,
    100: ParagraphStyle.BULLET_DOT,
    101: ParagraphStyle.BULLET_DASH,
    102: ParagraphStyle.NUMBERED,
    103: ParagraphStyle.CHECKBOX,
}


def _skip_zero_terminated(data: bytes, position: int) -> int:
    end = data.find(b"\x00", position)
    if end < 0:
        raise FormatError("Unterminated string in gzip header")
    return end + 1


def gunzip(data: bytes) -> bytes:
    """
    Decompress a gzip member, parsing the header by hand.

    Args:
        data: Bytes starting with the gzip magic

    Returns:
        The inflated payload

    Raises:
        FormatError: If the header is truncated or the deflate stream is corrupt
    """
    if len(data) <= GZIP_HEADER_SIZE:
        raise FormatError("Invalid gzip header: payload too short")

    flags = data[3]
    position = GZIP_HEADER_SIZE

    if flags & FEXTRA:
        if len(data) < position + 2:
            raise FormatError("Invalid gzip header: truncated extra field")
        extra_length = data[position] | (data[position + 1] << 8)
        position += 2 + extra_length
    if flags & FNAME:
        position = _skip_zero_terminated(data, position)
    if flags & FCOMMENT:
        position = _skip_zero_terminated(data, position)
    if flags & FHCRC:
        position += 2

    if position >= len(data) - GZIP_TRAILER_SIZE:
        raise FormatError("Invalid gzip header: no room for compressed data")

    body = data[position:len(data) - GZIP_TRAILER_SIZE]
    try:
        return zlib.decompress(body, -zlib.MAX_WBITS)
    except zlib.error:
        pass
    try:
        # Some writers emit zlib framing inside the gzip envelope
        return zlib.decompress(body)
    except zlib.error as e:
        raise FormatError(f"Failed to decompress note data: {e}")


def extract_readable_text(data: bytes) -> str:
    """
    Fallback scan: printable ASCII runs of at least three characters.

    Runs ended by a newline keep the newline, any other byte becomes a space.
    """
    text: List[str] = []
    word = bytearray()

    def flush(separator: str):
        if len(word) >= MIN_FALLBACK_RUN:
            text.append(word.decode("ascii") + separator)
        word.clear()

    for byte in data:
        if 0x20 <= byte < 0x7F:
            word.append(byte)
        elif byte in (0x0A, 0x0D):
            flush("\n")
        else:
            flush(" ")
    flush("")
    return "".join(text).strip()


REJECTED_CATEGORIES = ("Cc", "Cs", "Cn")


def _is_text_char(ch: str) -> bool:
    # Format characters (ZWJ, soft hyphen, direction marks) are real note text.
    return ch.isspace() or unicodedata.category(ch) not in REJECTED_CATEGORIES


def _as_text(value: bytes) -> Optional[str]:
    """UTF-8 text free of control and unassigned code points, else None."""
    try:
        text = value.decode("utf-8")
    except UnicodeDecodeError:
        return None
    if not text:
        return None
    if all(_is_text_char(ch) for ch in text):
        return text
    return None


@dataclass
class _Candidate:
    depth: int
    text: str
    runs: Tuple[AttributeRun, ...]
    has_attachments: bool


def empty_content() -> DecodedContent:
    """Decoded form of a note with no body."""
    return DecodedContent(plaintext="", markdown="", html=render_plaintext_html(""))


class NoteDecoder:
    """Turns raw note payloads into DecodedContent.

    Field numbers are configuration: the grammar was reverse-engineered and
    the fallback text scan stays in place for anything it does not cover.
    """

    def __init__(self, field_numbers: Optional[dict] = None):
        self.fields = get_decoder_field_numbers()
        if field_numbers:
            self.fields.update(field_numbers)

    def decode(self, payload: bytes) -> DecodedContent:
        """
        Decode a note payload.

        Args:
            payload: Raw bytes from the note source, gzipped or not

        Returns:
            DecodedContent with plaintext, markdown, html and attribute runs

        Raises:
            FormatError: On truncated input or corrupt compressed framing
        """
        if payload is None or len(payload) < 2:
            raise FormatError("Note data is too short to parse")

        if payload[:2] == GZIP_MAGIC:
            buffer = gunzip(payload)
        else:
            buffer = bytes(payload)

        candidate = self._search(buffer, depth=0)
        if candidate is None:
            plaintext = extract_readable_text(buffer)
            logger.debug(f"No structured text found, fallback scan recovered {len(plaintext)} chars")
            return DecodedContent(
                plaintext=plaintext,
                markdown=plaintext,
                html=render_plaintext_html(plaintext),
                attribute_runs=(),
                has_embedded_objects=OBJECT_REPLACEMENT_CHARACTER in plaintext
            )

        return self.render(candidate.text, candidate.runs, candidate.has_attachments)

    def render(
        self,
        plaintext: str,
        runs: Tuple[AttributeRun, ...] = (),
        has_attachments: bool = False
    ) -> DecodedContent:
        """Build DecodedContent from extracted text and runs."""
        if runs:
            lines = apply_runs(plaintext, runs)
            markdown = render_markdown(lines)
            html = render_html(lines)
        else:
            markdown = plaintext
            html = render_plaintext_html(plaintext)
        return DecodedContent(
            plaintext=plaintext,
            markdown=markdown,
            html=html,
            attribute_runs=tuple(runs),
            has_embedded_objects=has_attachments or OBJECT_REPLACEMENT_CHARACTER in plaintext
        )

    def _fields(self, data: bytes) -> list:
        """Fields of a buffer up to the first framing error."""
        fields = []
        try:
            for wire_field in iter_fields(data):
                fields.append(wire_field)
        except FormatError as e:
            logger.debug(f"Stopped walking message: {e}")
        return fields

    def _search(self, data: bytes, depth: int) -> Optional[_Candidate]:
        """Find the deepest text-bearing message under data."""
        if depth > MAX_DEPTH:
            return None

        fields = self._fields(data)
        text_field = self.fields["note_text"]
        run_field = self.fields["attribute_run"]

        best: Optional[_Candidate] = None
        for wire_field in fields:
            if wire_field.number == text_field and wire_field.wire_type == WIRE_LENGTH_DELIMITED:
                text = _as_text(wire_field.value)
                if text is not None:
                    runs, has_attachments = self._parse_runs(fields)
                    best = _Candidate(depth, text, runs, has_attachments)
                    break

        for wire_field in fields:
            if wire_field.wire_type != WIRE_LENGTH_DELIMITED:
                continue
            if best is not None and wire_field.number in (text_field, run_field):
                continue
            if wire_field.number == text_field and _as_text(wire_field.value) is not None:
                continue
            nested = self._search(wire_field.value, depth + 1)
            if nested is not None and (best is None or nested.depth > best.depth):
                best = nested

        return best

    def _parse_runs(self, fields: list) -> Tuple[Tuple[AttributeRun, ...], bool]:
        runs = []
        has_attachments = False
        for wire_field in fields:
            if wire_field.number != self.fields["attribute_run"]:
                continue
            if wire_field.wire_type != WIRE_LENGTH_DELIMITED:
                continue
            run, attachment = self._parse_run(wire_field.value)
            runs.append(run)
            has_attachments = has_attachments or attachment
        return tuple(runs), has_attachments

    def _parse_run(self, data: bytes) -> Tuple[AttributeRun, bool]:
        length = 0
        weight = FontWeight.NONE
        style = ParagraphStyle.NONE
        attachment = False

        for wire_field in self._fields(data):
            if wire_field.number == self.fields["run_length"] and wire_field.wire_type == WIRE_VARINT:
                length = wire_field.value
            elif wire_field.number == self.fields["font_weight"] and wire_field.wire_type == WIRE_VARINT:
                try:
                    weight = FontWeight(wire_field.value)
                except ValueError:
                    weight = FontWeight.NONE
            elif (wire_field.number == self.fields["paragraph_style"]
                  and wire_field.wire_type == WIRE_LENGTH_DELIMITED):
                style = self._parse_paragraph_style(wire_field.value)
            elif (wire_field.number == self.fields["attachment_info"]
                  and wire_field.wire_type == WIRE_LENGTH_DELIMITED):
                attachment = True

        return AttributeRun(length=length, font_weight=weight, paragraph_style=style), attachment

    def _parse_paragraph_style(self, data: bytes) -> ParagraphStyle:
        style = ParagraphStyle.NONE
        done = False
        for wire_field in self._fields(data):
            if wire_field.number == self.fields["style_type"] and wire_field.wire_type == WIRE_VARINT:
                style = STYLE_TYPES.get(wire_field.value, ParagraphStyle.NONE)
            elif (wire_field.number == self.fields["checklist"]
                  and wire_field.wire_type == WIRE_LENGTH_DELIMITED):
                for checklist_field in self._fields(wire_field.value):
                    if (checklist_field.number == self.fields["checklist_done"]
                            and checklist_field.wire_type == WIRE_VARINT):
                        done = bool(checklist_field.value)
        if style == ParagraphStyle.CHECKBOX and done:
            return ParagraphStyle.CHECKED_CHECKBOX
        return style


_default_decoder: Optional[NoteDecoder] = None


def decode(payload: bytes) -> DecodedContent:
    """Decode a payload with the configured field numbers."""
    global _default_decoder
    if _default_decoder is None:
        _default_decoder = NoteDecoder()
    return _default_decoder.decode(payload)
