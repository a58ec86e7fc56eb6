"""Tests for Markdown and HTML rendering of styled note text."""

from shared.models import AttributeRun, FontWeight, ParagraphStyle
from services.note_decoder.renderer import (
    apply_runs,
    render_html,
    render_markdown,
    render_plaintext_html,
)


def run(length, style=ParagraphStyle.NONE, weight=FontWeight.NONE):
    return AttributeRun(length=length, font_weight=weight, paragraph_style=style)


def markdown(text, runs):
    return render_markdown(apply_runs(text, runs))


def body(text, runs):
    document = render_html(apply_runs(text, runs))
    assert document.startswith("<html><head></head><body>")
    assert document.endswith("</body></html>")
    return document[len("<html><head></head><body>"):-len("</body></html>")]


class TestApplyRuns:
    """Tests for slicing text by attribute runs."""

    def test_line_takes_style_of_its_run(self):
        lines = apply_runs("Title\nItem", [run(6, ParagraphStyle.TITLE), run(4, ParagraphStyle.BULLET_DOT)])

        assert [(line.text, line.style) for line in lines] == [
            ("Title", ParagraphStyle.TITLE),
            ("Item", ParagraphStyle.BULLET_DOT),
        ]

    def test_overlong_run_is_clamped(self):
        lines = apply_runs("abc", [run(10, weight=FontWeight.BOLD), run(5, ParagraphStyle.TITLE)])

        assert len(lines) == 1
        assert lines[0].segments == [("abc", FontWeight.BOLD)]
        assert lines[0].style == ParagraphStyle.NONE

    def test_uncovered_tail_uses_default_style(self):
        lines = apply_runs("abcdef", [run(3, weight=FontWeight.BOLD)])

        assert lines[0].segments == [("abc", FontWeight.BOLD), ("def", FontWeight.NONE)]

    def test_no_runs(self):
        lines = apply_runs("one\ntwo", [])

        assert [line.text for line in lines] == ["one", "two"]


class TestRenderMarkdown:
    """Tests for Markdown output."""

    def test_headings_and_bullets(self):
        text = "Title\nHeading\nSub\nDot\nDash"
        runs = [
            run(6, ParagraphStyle.TITLE),
            run(8, ParagraphStyle.HEADING),
            run(4, ParagraphStyle.SUBHEADING),
            run(4, ParagraphStyle.BULLET_DOT),
            run(4, ParagraphStyle.BULLET_DASH),
        ]

        assert markdown(text, runs) == "# Title\n## Heading\n### Sub\n* Dot\n- Dash"

    def test_numbered_list_counts_and_resets(self):
        text = "a\nb\nplain\nc"
        runs = [run(4, ParagraphStyle.NUMBERED), run(6), run(1, ParagraphStyle.NUMBERED)]

        assert markdown(text, runs) == "1. a\n2. b\nplain\n1. c"

    def test_checklist(self):
        runs = [run(2, ParagraphStyle.CHECKBOX), run(1, ParagraphStyle.CHECKED_CHECKBOX)]

        assert markdown("x\ny", runs) == "- [ ] x\n- [x] y"

    def test_monospace_block_is_fenced(self):
        text = "code\nmore\nafter"
        runs = [run(10, ParagraphStyle.MONOSPACE), run(5)]

        assert markdown(text, runs) == "```\ncode\nmore\n```\nafter"

    def test_font_weights(self):
        text = "Hello world and more"
        runs = [
            run(5),
            run(6, weight=FontWeight.BOLD),
            run(4, weight=FontWeight.ITALIC),
            run(5, weight=FontWeight.BOLD_ITALIC),
        ]

        assert markdown(text, runs) == "Hello **world** *and* ***more***"

    def test_empty_lines_are_kept(self):
        assert markdown("a\n\nb", [run(2, ParagraphStyle.HEADING)]) == "## a\n\nb"


class TestRenderHtml:
    """Tests for HTML output."""

    def test_heading_and_plain_lines(self):
        result = body("Title\nText\n\nEnd", [run(6, ParagraphStyle.TITLE)])

        assert result == "<h1>Title</h1>\n<div>Text</div>\n<div><br></div>\n<div>End</div>"

    def test_lists_are_grouped(self):
        runs = [run(4, ParagraphStyle.BULLET_DOT), run(2, ParagraphStyle.NUMBERED)]

        assert body("a\nb\nc", runs) == "<ul>\n<li>a</li>\n<li>b</li>\n</ul>\n<ol>\n<li>c</li>\n</ol>"

    def test_checklist_items(self):
        runs = [run(2, ParagraphStyle.CHECKBOX), run(1, ParagraphStyle.CHECKED_CHECKBOX)]

        assert body("x\ny", runs) == (
            '<ul>\n<li data-checked="false">x</li>\n<li data-checked="true">y</li>\n</ul>'
        )

    def test_monospace_and_escaping(self):
        runs = [run(6, ParagraphStyle.MONOSPACE), run(5, weight=FontWeight.BOLD)]

        assert body("a < b\nx & y", runs) == "<pre><code>a &lt; b</code></pre>\n<div><b>x &amp; y</b></div>"


def test_plaintext_html_paragraphs():
    assert render_plaintext_html("a\nb\n\n<c>") == (
        "<html><head></head><body><p>a<br>b</p>\n<p>&lt;c&gt;</p></body></html>"
    )
