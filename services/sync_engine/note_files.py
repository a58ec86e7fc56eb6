"""Local plaintext mirror: scanning, parsing and writing note files."""

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Tuple

import markdown
import yaml

from shared.models import content_hash

logger = logging.getLogger(__name__)

FRONTMATTER_DELIMITER = "---"


@dataclass
class LocalFile:
    """A note file found under the sync directory."""
    relative_path: str
    full_path: str
    title: str
    body: str
    hash: str


def body_hash(body: str) -> str:
    """Hash of a note body as compared across runs."""
    return content_hash(body.strip())


def split_frontmatter(content: str) -> Tuple[dict, str]:
    """Split YAML frontmatter from the rest of a file."""
    if not content.startswith(FRONTMATTER_DELIMITER + "\n"):
        return {}, content

    end = content.find("\n" + FRONTMATTER_DELIMITER, len(FRONTMATTER_DELIMITER))
    if end < 0:
        return {}, content

    raw = content[len(FRONTMATTER_DELIMITER) + 1:end]
    rest = content[end + len(FRONTMATTER_DELIMITER) + 1:]
    try:
        metadata = yaml.safe_load(raw) or {}
    except yaml.YAMLError as e:
        logger.warning(f"Ignoring unparseable frontmatter: {e}")
        return {}, content
    if not isinstance(metadata, dict):
        return {}, content
    return metadata, rest


def parse_note_file(content: str, fallback_title: str = "Untitled") -> Tuple[str, str, dict]:
    """
    Parse a note file into title, body and frontmatter.

    The title comes from the frontmatter, else from a leading `# ` heading,
    else from fallback_title. A leading heading is always removed from the body.

    Returns:
        Tuple of (title, body, frontmatter)
    """
    metadata, body = split_frontmatter(content)
    body = body.strip()
    title = str(metadata["title"]) if metadata.get("title") else None

    if body.startswith("# "):
        first_line, _, remainder = body.partition("\n")
        heading = first_line[2:].strip()
        title = title or heading
        body = remainder.strip()

    return title or fallback_title, body, metadata


def format_note_file(
    title: str,
    body: str,
    note_uuid: Optional[str] = None,
    modified_at: Optional[datetime] = None
) -> str:
    """Render a note as Markdown with YAML frontmatter and a title heading."""
    metadata = {"title": title}
    if note_uuid:
        metadata["uuid"] = note_uuid
    if modified_at:
        metadata["modified"] = modified_at.isoformat()
    frontmatter = yaml.safe_dump(metadata, sort_keys=False, allow_unicode=True)
    return f"{FRONTMATTER_DELIMITER}\n{frontmatter}{FRONTMATTER_DELIMITER}\n\n# {title}\n\n{body.strip()}\n"


def markdown_to_html(text: str) -> str:
    """Convert a Markdown body to an HTML document for the note sink."""
    body = markdown.markdown(text, extensions=["extra", "sane_lists"])
    return f"<html><head></head><body>{body}</body></html>"


def read_local_file(local_dir: str, relative_path: str) -> LocalFile:
    """Read and parse one note file."""
    full_path = os.path.join(local_dir, *relative_path.split("/"))
    with open(full_path, "r", encoding="utf-8") as f:
        content = f.read()
    stem = os.path.splitext(os.path.basename(relative_path))[0]
    title, body, _ = parse_note_file(content, fallback_title=stem)
    return LocalFile(
        relative_path=relative_path,
        full_path=full_path,
        title=title,
        body=body,
        hash=body_hash(body)
    )


def write_local_file(local_dir: str, relative_path: str, content: str) -> str:
    """Atomically write a note file, creating parent directories."""
    full_path = os.path.join(local_dir, *relative_path.split("/"))
    os.makedirs(os.path.dirname(full_path), exist_ok=True)
    temp_path = full_path + ".tmp"
    with open(temp_path, "w", encoding="utf-8") as f:
        f.write(content)
    os.replace(temp_path, full_path)
    return full_path


def scan_local_files(local_dir: str, extension: str) -> Dict[str, LocalFile]:
    """
    Find note files under a directory.

    Hidden files and directories are ignored, as are files that are not
    valid UTF-8.

    Args:
        local_dir: Root of the local mirror
        extension: File extension without the dot

    Returns:
        Dictionary of relative POSIX path to LocalFile
    """
    files: Dict[str, LocalFile] = {}
    suffix = "." + extension

    for root, dirs, names in os.walk(local_dir):
        dirs[:] = sorted(d for d in dirs if not d.startswith("."))
        for name in sorted(names):
            if name.startswith(".") or not name.endswith(suffix):
                continue
            relative_path = os.path.relpath(os.path.join(root, name), local_dir).replace(os.sep, "/")
            try:
                files[relative_path] = read_local_file(local_dir, relative_path)
            except UnicodeDecodeError:
                logger.warning(f"Skipping {relative_path}: not valid UTF-8")

    return files
