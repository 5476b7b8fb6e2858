"""Interfaces between the archiver core and a concrete mail client.

Any adapter (IMAP, a desktop client's automation model, a web API) exposes
its stores as :class:`Account` objects whose folder trees implement
:class:`FolderLike`. The core never talks to a mail client any other way.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Protocol

logger = logging.getLogger(__name__)


class MailArchiverError(Exception):
    """Base class for archiver errors."""


class ItemClass(str, Enum):
    """Kinds of items a folder can hold."""

    MAIL = "mail"
    MEETING = "meeting"
    CALENDAR = "calendar"
    CONTACT = "contact"
    TASK = "task"


class AccountKind(str, Enum):
    """How an account organizes archived mail."""

    REGULAR = "regular"
    LABEL = "label"


class MessageHandle(Protocol):
    """A message as seen by the core.

    Reading ``subject`` or ``received_time`` may raise for corrupted items.
    """

    @property
    def subject(self) -> str: ...

    @property
    def received_time(self) -> datetime: ...

    def move_to(self, destination: FolderLike) -> None: ...


class FolderLike(Protocol):
    """A folder or label in an account's tree."""

    @property
    def name(self) -> str: ...

    def get_child(self, name: str) -> FolderLike | None:
        """Direct child lookup by exact name.

        Returns None when no such child exists. Adapters that cannot look
        children up by name raise NotImplementedError.
        """
        ...

    def add_child(self, name: str) -> FolderLike: ...

    def children(self) -> Iterable[FolderLike]: ...

    def list_items(self, item_classes: Collection[ItemClass]) -> Sequence[MessageHandle]: ...


@dataclass
class Account:
    """A mailbox/store exposed by the mail client."""

    name: str
    root: FolderLike
    kind: AccountKind = AccountKind.REGULAR
    inbox_name: str = "Inbox"


class MailClient(Protocol):
    """Source of accounts for one run."""

    def list_accounts(self) -> Sequence[Account]: ...


def find_child(folder: FolderLike, name: str) -> FolderLike | None:
    """Find a child by exact name.

    Uses direct lookup, and enumerates the children when the adapter does
    not support direct lookup.
    """
    try:
        return folder.get_child(name)
    except NotImplementedError:
        logger.debug(f"Direct lookup unsupported under '{folder.name}', enumerating")

    for child in folder.children():
        if child.name == name:
            return child
    return None


def get_or_create_child(parent: FolderLike, name: str) -> FolderLike:
    """Return the child called ``name``, creating it only if it is missing."""
    child = find_child(parent, name)
    if child is not None:
        return child

    logger.info(f"Creating folder '{name}' under '{parent.name}'")
    return parent.add_child(name)
