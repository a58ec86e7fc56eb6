"""Tests for the note payload decoder."""

import gzip

import pytest

from shared.errors import FormatError
from shared.models import FontWeight, ParagraphStyle
from services.note_decoder.decoder import (
    NoteDecoder,
    decode,
    empty_content,
    extract_readable_text,
    gunzip,
)
from services.note_decoder.wire import encode_field


def attribute_run(length, style_type=None, weight=None, checked=None, attachment=False):
    data = encode_field(1, length)
    if style_type is not None:
        style = encode_field(1, style_type)
        if checked is not None:
            style += encode_field(5, encode_field(1, b"item-uuid") + encode_field(2, int(checked)))
        data += encode_field(2, style)
    if weight is not None:
        data += encode_field(5, weight)
    if attachment:
        data += encode_field(12, encode_field(1, "public.jpeg"))
    return data


def note_payload(text, runs=()):
    """Wrap a note body the way the store nests it: store > document > note."""
    note = encode_field(2, text) + b"".join(encode_field(5, r) for r in runs)
    document = encode_field(2, 1) + encode_field(3, note)
    return encode_field(2, document)


@pytest.fixture
def decoder():
    return NoteDecoder()


def test_decodes_nested_plain_note(decoder):
    content = decoder.decode(note_payload("Shopping\nMilk"))

    assert content.plaintext == "Shopping\nMilk"
    assert content.markdown == "Shopping\nMilk"
    assert content.attribute_runs == ()
    assert content.has_embedded_objects is False


def test_decodes_gzipped_note_with_runs(decoder):
    text = "Groceries\nMilk\nEggs"
    runs = [
        attribute_run(10, style_type=0),
        attribute_run(5, style_type=103, checked=True),
        attribute_run(4, style_type=103, checked=False, weight=1),
    ]

    content = decoder.decode(gzip.compress(note_payload(text, runs)))

    assert content.plaintext == text
    assert [r.paragraph_style for r in content.attribute_runs] == [
        ParagraphStyle.TITLE, ParagraphStyle.CHECKED_CHECKBOX, ParagraphStyle.CHECKBOX,
    ]
    assert content.attribute_runs[2].font_weight == FontWeight.BOLD
    assert content.markdown == "# Groceries\n- [x] Milk\n- [ ] **Eggs**"
    assert "<h1>Groceries</h1>" in content.html


def test_unknown_font_weight_is_ignored(decoder):
    content = decoder.decode(note_payload("abc", [attribute_run(3, weight=9)]))

    assert content.attribute_runs[0].font_weight == FontWeight.NONE


def test_overlong_run_is_clamped(decoder):
    content = decoder.decode(note_payload("short", [attribute_run(500, weight=2)]))

    assert content.plaintext == "short"
    assert content.markdown == "*short*"


def test_attachment_marks_embedded_objects(decoder):
    text = "Photo \ufffc"
    content = decoder.decode(note_payload(text, [attribute_run(8, attachment=True)]))

    assert content.has_embedded_objects is True


def test_accented_text_keeps_runs(decoder):
    text = "Café crème\nRésumé"
    runs = [attribute_run(11, style_type=0), attribute_run(6, weight=1)]

    content = decoder.decode(gzip.compress(note_payload(text, runs)))

    assert content.plaintext == text
    assert [r.length for r in content.attribute_runs] == [11, 6]
    assert content.markdown == "# Café crème\n**Résumé**"


def test_zero_width_joiner_emoji_is_note_text(decoder):
    text = "Family \U0001F468\u200d\U0001F469\u200d\U0001F467 trip\nPack bags"
    runs = [attribute_run(18, style_type=0), attribute_run(9)]

    content = decoder.decode(gzip.compress(note_payload(text, runs)))

    assert content.plaintext == text
    assert content.attribute_runs[0].paragraph_style == ParagraphStyle.TITLE
    assert content.markdown.splitlines()[0] == "# Family \U0001F468\u200d\U0001F469\u200d\U0001F467 trip"


def test_soft_hyphen_and_direction_marks_are_note_text(decoder):
    text = "co\u00adoperate with the \u200fteam\u200e"
    runs = [attribute_run(len(text), weight=1)]

    content = decoder.decode(note_payload(text, runs))

    assert content.plaintext == text
    assert len(content.attribute_runs) == 1
    assert content.attribute_runs[0].font_weight == FontWeight.BOLD


def test_control_characters_are_not_note_text(decoder):
    payload = encode_field(2, b"ab\x01\x02cd")

    content = decoder.decode(payload)

    assert content.attribute_runs == ()
    assert "\x01" not in content.plaintext


def test_deeper_text_wins(decoder):
    payload = encode_field(2, "outer label") + encode_field(3, encode_field(2, "inner body"))

    assert decoder.decode(payload).plaintext == "inner body"


def test_custom_field_numbers():
    decoder = NoteDecoder(field_numbers={"note_text": 4})
    payload = encode_field(3, encode_field(4, "renumbered"))

    assert decoder.decode(payload).plaintext == "renumbered"


def test_non_protobuf_falls_back_to_text_scan(decoder):
    content = decoder.decode(b"Hello, plain world\x00\x01more text")

    assert content.plaintext == "Hello, plain world more text"
    assert content.attribute_runs == ()
    assert content.markdown == content.plaintext


def test_fallback_scan_drops_short_runs():
    assert extract_readable_text(b"ab\x00abc\ndef\x01g") == "abc\ndef"


def test_too_short_payload_raises(decoder):
    with pytest.raises(FormatError):
        decoder.decode(b"\x1f")


def test_truncated_gzip_raises(decoder):
    text = " ".join(f"word{i}" for i in range(300))
    compressed = gzip.compress(note_payload(text))

    with pytest.raises(FormatError):
        decoder.decode(compressed[:len(compressed) // 2])


def test_gzip_header_only_raises():
    with pytest.raises(FormatError):
        gunzip(b"\x1f\x8b\x08\x00")


def test_gzip_with_filename_header():
    body = gzip.compress(b"payload")
    # Set FNAME and splice a zero-terminated name after the fixed header
    with_name = body[:3] + bytes([body[3] | 0x08]) + body[4:10] + b"note.bin\x00" + body[10:]

    assert gunzip(with_name) == b"payload"


def test_empty_content():
    content = empty_content()

    assert content.plaintext == ""
    assert content.attribute_runs == ()


def test_module_level_decode():
    assert decode(note_payload("via module")).plaintext == "via module"
