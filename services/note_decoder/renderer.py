"""Render decoded note text and attribute runs as Markdown and HTML."""

import html
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

from shared.models import AttributeRun, FontWeight, ParagraphStyle

MARKDOWN_PREFIXES = {
    ParagraphStyle.TITLE: "# ",
    ParagraphStyle.HEADING: "## ",
    ParagraphStyle.SUBHEADING: "### ",
    ParagraphStyle.BULLET_DOT: "* ",
    ParagraphStyle.BULLET_DASH: "- ",
    ParagraphStyle.CHECKBOX: "- [ ] ",
    ParagraphStyle.CHECKED_CHECKBOX: "- [x] ",
}

HEADING_TAGS = {
    ParagraphStyle.TITLE: "h1",
    ParagraphStyle.HEADING: "h2",
    ParagraphStyle.SUBHEADING: "h3",
}

LIST_STYLES = {
    ParagraphStyle.BULLET_DOT: "ul",
    ParagraphStyle.BULLET_DASH: "ul",
    ParagraphStyle.CHECKBOX: "ul",
    ParagraphStyle.CHECKED_CHECKBOX: "ul",
    ParagraphStyle.NUMBERED: "ol",
}

_MARKDOWN_WEIGHT = {
    FontWeight.BOLD: "**",
    FontWeight.ITALIC: "*",
    FontWeight.BOLD_ITALIC: "***",
}

_HTML_WEIGHT = {
    FontWeight.BOLD: ("<b>", "</b>"),
    FontWeight.ITALIC: ("<i>", "</i>"),
    FontWeight.BOLD_ITALIC: ("<b><i>", "</i></b>"),
}


@dataclass
class Line:
    """One line of note text with the style of the run that opened it."""
    style: ParagraphStyle = ParagraphStyle.NONE
    segments: List[Tuple[str, FontWeight]] = field(default_factory=list)
    styled: bool = False

    @property
    def text(self) -> str:
        return "".join(text for text, _ in self.segments)


def apply_runs(plaintext: str, runs: Sequence[AttributeRun]) -> List[Line]:
    """
    Slice plaintext by attribute runs into styled lines.

    Runs are consumed left to right. A run longer than the remaining text
    is clamped and ends the walk. Text past the last run keeps the default
    style.
    """
    pieces: List[Tuple[str, AttributeRun]] = []
    position = 0
    for run in runs:
        remaining = len(plaintext) - position
        if remaining <= 0:
            break
        take = min(max(run.length, 0), remaining)
        if take:
            pieces.append((plaintext[position:position + take], run))
        position += take
        if run.length > remaining:
            break
    if position < len(plaintext):
        pieces.append((plaintext[position:], AttributeRun(length=len(plaintext) - position)))

    lines = [Line()]
    for text, run in pieces:
        parts = text.split("\n")
        for index, part in enumerate(parts):
            current = lines[-1]
            ends_line = index < len(parts) - 1
            if not current.styled and (part or ends_line):
                # The run covering a line's first character (or its newline) owns the line
                current.style = run.paragraph_style
                current.styled = True
            if part:
                current.segments.append((part, run.font_weight))
            if ends_line:
                lines.append(Line())
    return lines


def _wrap_markdown(text: str, weight: FontWeight) -> str:
    marker = _MARKDOWN_WEIGHT.get(weight)
    core = text.strip()
    if not marker or not core:
        return text
    lead = text[:len(text) - len(text.lstrip())]
    trail = text[len(text.rstrip()):]
    return f"{lead}{marker}{core}{marker}{trail}"


def _wrap_html(text: str, weight: FontWeight) -> str:
    escaped = html.escape(text, quote=False)
    tags = _HTML_WEIGHT.get(weight)
    if not tags or not text.strip():
        return escaped
    return f"{tags[0]}{escaped}{tags[1]}"


def render_markdown(lines: Sequence[Line]) -> str:
    """Render styled lines as Markdown."""
    out: List[str] = []
    in_code = False
    number = 0

    for line in lines:
        if line.style == ParagraphStyle.MONOSPACE:
            if not in_code:
                out.append("```")
                in_code = True
            out.append(line.text)
            continue
        if in_code:
            out.append("```")
            in_code = False

        if line.style == ParagraphStyle.NUMBERED and line.segments:
            number += 1
            prefix = f"{number}. "
        else:
            if line.segments:
                number = 0
            prefix = MARKDOWN_PREFIXES.get(line.style, "")

        if not line.segments:
            out.append("")
            continue
        out.append(prefix + "".join(_wrap_markdown(text, weight) for text, weight in line.segments))

    if in_code:
        out.append("```")
    return "\n".join(out)


def render_html(lines: Sequence[Line]) -> str:
    """Render styled lines as an HTML document in the note application's dialect."""
    body: List[str] = []
    open_list = None
    code_lines: List[str] = []

    def close_blocks():
        nonlocal open_list
        if open_list:
            body.append(f"</{open_list}>")
            open_list = None
        if code_lines:
            body.append("<pre><code>" + "\n".join(code_lines) + "</code></pre>")
            code_lines.clear()

    for line in lines:
        inner = "".join(_wrap_html(text, weight) for text, weight in line.segments)

        if line.style == ParagraphStyle.MONOSPACE:
            if open_list:
                body.append(f"</{open_list}>")
                open_list = None
            code_lines.append(html.escape(line.text, quote=False))
            continue

        list_tag = LIST_STYLES.get(line.style)
        if list_tag and line.segments:
            if code_lines or open_list != list_tag:
                close_blocks()
                body.append(f"<{list_tag}>")
                open_list = list_tag
            if line.style == ParagraphStyle.CHECKBOX:
                body.append(f'<li data-checked="false">{inner}</li>')
            elif line.style == ParagraphStyle.CHECKED_CHECKBOX:
                body.append(f'<li data-checked="true">{inner}</li>')
            else:
                body.append(f"<li>{inner}</li>")
            continue

        close_blocks()
        tag = HEADING_TAGS.get(line.style)
        if tag and line.segments:
            body.append(f"<{tag}>{inner}</{tag}>")
        elif line.segments:
            body.append(f"<div>{inner}</div>")
        else:
            body.append("<div><br></div>")

    close_blocks()
    return "<html><head></head><body>" + "\n".join(body) + "</body></html>"


def render_plaintext_html(text: str) -> str:
    """Basic HTML for unstyled text: blank lines split paragraphs."""
    escaped = html.escape(text, quote=False)
    paragraphs = "\n".join(
        "<p>" + paragraph.replace("\n", "<br>") + "</p>"
        for paragraph in escaped.split("\n\n")
    )
    return f"<html><head></head><body>{paragraphs}</body></html>"
