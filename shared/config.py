"""Shared configuration utilities."""

import os
from typing import Optional


def get_env(key: str, default: Optional[str] = None, required: bool = False) -> str:
    """Get environment variable with optional default and required validation."""
    value = os.getenv(key, default)
    if required and not value:
        raise ValueError(f"Required environment variable {key} is not set")
    return value


def get_env_int(key: str, default: Optional[int] = None) -> Optional[int]:
    """Get an integer environment variable, raising ValueError on junk."""
    value = os.getenv(key)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Environment variable {key} must be an integer, got {value!r}")


def _sqlite_url(path: str) -> str:
    return f"sqlite:///{os.path.expanduser(path)}"


def get_version_database_url() -> str:
    """Get the version history database URL from environment."""
    return get_env("PICKLE_DATABASE_URL", _sqlite_url("~/.pickle/versions.db"))


def get_state_database_url() -> str:
    """Get the sync state database URL from environment."""
    return get_env("CIDER_DATABASE_URL", _sqlite_url("~/.cider/state.db"))


def get_version_storage_path() -> str:
    """Get the directory holding compressed version files."""
    return os.path.expanduser(get_env("PICKLE_STORAGE_PATH", "~/.pickle/versions"))


def get_monitor_config() -> dict:
    """Get change monitor configuration from environment."""
    return {
        "interval": get_env_int("PICKLE_INTERVAL", 30),
        "keep_versions": get_env_int("PICKLE_KEEP_VERSIONS"),
    }


def get_sync_config() -> dict:
    """Get sync engine configuration from environment."""
    return {
        "folder": get_env("CIDER_FOLDER", "Cider Sync"),
        "extension": get_env("CIDER_EXTENSION", "md").lstrip("."),
    }


# Field numbers of the note body grammar. These are reverse-engineered and
# only partially verified, so every one of them can be overridden.
DEFAULT_FIELD_NUMBERS = {
    "note_text": 2,
    "attribute_run": 5,
    "run_length": 1,
    "paragraph_style": 2,
    "style_type": 1,
    "checklist": 5,
    "checklist_done": 2,
    "font_weight": 5,
    "attachment_info": 12,
}


def get_decoder_field_numbers() -> dict:
    """Get decoder field numbers, overridable via NOTE_FIELD_<NAME> variables."""
    return {
        name: get_env_int(f"NOTE_FIELD_{name.upper()}", default)
        for name, default in DEFAULT_FIELD_NUMBERS.items()
    }
