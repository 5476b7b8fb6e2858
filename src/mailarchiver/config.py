"""Configuration management for mailarchiver."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Annotated, Any, Literal, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator


class RootFolder(BaseModel):
    """Archive root is a top-level folder of the account."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["root"] = "root"
    name: str


class InboxSubfolder(BaseModel):
    """Archive root is a folder directly under the account's inbox."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["inbox"] = "inbox"
    name: str


class Label(BaseModel):
    """Archive root is a label (Gmail-style accounts)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["label"] = "label"
    name: str


ArchiveDestination = Annotated[
    Union[RootFolder, InboxSubfolder, Label],
    Field(discriminator="kind"),
]

# Older configuration files stored destinations as "Type:Name" strings
_LEGACY_KINDS = {
    "root": "root",
    "inbox": "inbox",
    "label": "label",
    "gmail": "label",
}


def describe_destination(destination: RootFolder | InboxSubfolder | Label) -> str:
    """Human readable form of a destination, e.g. ``inbox:Archive``."""
    return f"{destination.kind}:{destination.name}"


def parse_legacy_destination(value: str) -> dict[str, str]:
    """Convert a legacy ``Type:Name`` string into descriptor data.

    Raises:
        ValueError: If the string has no known type prefix
    """
    kind, sep, name = value.partition(":")
    if not sep or not name:
        raise ValueError(f"Invalid archive path '{value}', expected 'Type:Name'")

    normalized = _LEGACY_KINDS.get(kind.strip().lower())
    if normalized is None:
        raise ValueError(f"Unknown archive path type '{kind}' in '{value}'")

    return {"kind": normalized, "name": name.strip()}


class SkipRule(BaseModel):
    """Subjects that are never archived for one account."""

    account_name: str
    subject_substrings: list[str] = Field(default_factory=list)
    case_sensitive: bool = Field(
        default=False,
        description="Match substrings case-sensitively (default: case-insensitive)",
    )

    def applies_to(self, account_name: str) -> bool:
        """Rules are scoped to exactly one account name."""
        return self.account_name == account_name

    def matches(self, subject: str | None) -> str | None:
        """Return the first substring contained in the subject, or None."""
        if not subject:
            return None

        haystack = subject if self.case_sensitive else subject.lower()
        for needle in self.subject_substrings:
            if not needle:
                continue
            probe = needle if self.case_sensitive else needle.lower()
            if probe in haystack:
                return needle
        return None


class AccountFilterConfig(BaseModel):
    """Name based account filter applied before the core sees an account."""

    include: list[str] = Field(
        default_factory=list,
        description="Only process these accounts (empty: all accounts)",
    )
    exclude: list[str] = Field(
        default_factory=lambda: [
            "Internet Calendars",
            "SharePoint Lists",
            "Public Folders",
            "Calendar",
            "Contacts",
            "Tasks",
        ],
        description="Never process these accounts (case-insensitive)",
    )


class ImapAccountConfig(BaseModel):
    """IMAP server configuration for one account."""

    name: str
    host: str
    port: int = 993
    username: str
    password: str = Field(default="", repr=False)
    password_env: str | None = None
    timeout: int = 30
    inbox_folder: str = "INBOX"
    label_based: bool | None = Field(
        default=None,
        description="Treat the account as label based (default: detect Gmail)",
    )

    def get_password(self) -> str:
        """Return the password, preferring the environment variable."""
        if self.password_env:
            value = os.environ.get(self.password_env)
            if value:
                return value
        return self.password


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    log_file: str | None = None
    audit_file: str | None = "audit.jsonl"


class ReportConfig(BaseModel):
    """Run report configuration."""

    directory: str | None = None
    formats: list[Literal["md", "html"]] = Field(default_factory=lambda: ["md"])


class Config(BaseModel):
    """Main configuration."""

    retention_days: int = Field(default=14, ge=0)
    simulate: bool = True
    label_name: str = "Archive"
    archive_folder_name: str = "Archive"
    include_meeting_items: bool = Field(
        default=False,
        description="Also archive meeting requests and responses",
    )
    skip_rules: list[SkipRule] = Field(default_factory=list)
    archive_paths: dict[str, ArchiveDestination] = Field(default_factory=dict)
    accounts: AccountFilterConfig = Field(default_factory=lambda: AccountFilterConfig())
    imap: list[ImapAccountConfig] = Field(default_factory=list)
    logging: LoggingConfig = Field(default_factory=lambda: LoggingConfig())
    report: ReportConfig = Field(default_factory=lambda: ReportConfig())

    @field_validator("archive_paths", mode="before")
    @classmethod
    def _convert_legacy_paths(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        return {
            name: parse_legacy_destination(dest) if isinstance(dest, str) else dest
            for name, dest in value.items()
        }


def _read_raw(config_path: Path) -> dict[str, Any]:
    with open(config_path, "r", encoding="utf-8") as f:
        if config_path.suffix.lower() == ".json":
            data = json.load(f)
        else:
            data = yaml.safe_load(f)

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration root must be a mapping: {config_path}")
    return data


def load_config(config_path: str | Path) -> Config:
    """Load configuration from a YAML or JSON file."""
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    try:
        data = _read_raw(config_path)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ValueError(f"Cannot parse configuration {config_path}: {e}") from e

    return Config(**data)


def save_archive_paths(
    config_path: str | Path,
    archive_paths: dict[str, RootFolder | InboxSubfolder | Label],
) -> None:
    """Write archive paths back into the configuration file.

    Only the ``archive_paths`` key is replaced; every other key keeps its
    original value. The file keeps its format (YAML or JSON). YAML comments
    are not preserved. The new content is written to a temporary file next
    to the original and swapped in, so a failed write leaves the file as it
    was.
    """
    config_path = Path(config_path)
    data = _read_raw(config_path) if config_path.exists() else {}

    data["archive_paths"] = {
        name: destination.model_dump() for name, destination in sorted(archive_paths.items())
    }

    fd, tmp_name = tempfile.mkstemp(dir=config_path.parent, prefix=f".{config_path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            if config_path.suffix.lower() == ".json":
                json.dump(data, f, indent=2)
                f.write("\n")
            else:
                yaml.safe_dump(data, f, sort_keys=False, allow_unicode=True)
        os.replace(tmp_name, config_path)
    except BaseException:
        os.unlink(tmp_name)
        raise
