"""Archive root resolution with a write-through path cache."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from mailarchiver.config import InboxSubfolder, Label, RootFolder, describe_destination
from mailarchiver.folders import Account, FolderLike, MailArchiverError, find_child

logger = logging.getLogger(__name__)

Destination = RootFolder | InboxSubfolder | Label


class ArchiveRootNotFound(MailArchiverError):
    """No archive destination could be resolved for an account."""

    def __init__(self, account_name: str):
        super().__init__(f"No archive folder or label found for account '{account_name}'")
        self.account_name = account_name


@dataclass
class ArchiveRoot:
    """A resolved archive root."""

    folder: FolderLike
    destination: Destination
    from_cache: bool

    def describe(self) -> str:
        return describe_destination(self.destination)


class ArchivePathStore:
    """Account name to destination mapping, persisted through a callback.

    The mapping is advisory: a stored destination that no longer resolves
    is replaced by whatever the locator finds next.
    """

    def __init__(
        self,
        paths: dict[str, Destination] | None = None,
        on_change: Callable[[dict[str, Destination]], None] | None = None,
    ):
        self._paths: dict[str, Destination] = dict(paths or {})
        self._on_change = on_change

    def get(self, account_name: str) -> Destination | None:
        return self._paths.get(account_name)

    def set(self, account_name: str, destination: Destination) -> None:
        """Record a destination and persist the mapping if it changed."""
        if self._paths.get(account_name) == destination:
            return

        self._paths[account_name] = destination
        logger.info(
            f"[{account_name}] Archive path recorded: {describe_destination(destination)}"
        )

        if self._on_change is None:
            return
        try:
            self._on_change(dict(self._paths))
        except Exception as e:
            logger.error(f"[{account_name}] Failed to persist archive paths: {e}")

    def as_dict(self) -> dict[str, Destination]:
        return dict(self._paths)

    def __len__(self) -> int:
        return len(self._paths)

    def __contains__(self, account_name: object) -> bool:
        return account_name in self._paths


class ArchiveLocator:
    """Resolve the archive root of an account.

    Order: the cached destination, then an ``Archive`` folder under the
    inbox, an ``Archive`` folder at the account root, and finally the
    configured label. A hit found by searching is written back to the
    store.
    """

    def __init__(
        self,
        store: ArchivePathStore,
        archive_folder_name: str = "Archive",
        label_name: str = "Archive",
    ):
        self.store = store
        self.archive_folder_name = archive_folder_name
        self.label_name = label_name

    def search_order(self) -> list[Destination]:
        return [
            InboxSubfolder(name=self.archive_folder_name),
            RootFolder(name=self.archive_folder_name),
            Label(name=self.label_name),
        ]

    def resolve(self, account: Account) -> ArchiveRoot | None:
        """Return the archive root of ``account``, or None if nothing resolves."""
        cached = self.store.get(account.name)
        if cached is not None:
            folder = self._try_resolve(account, cached)
            if folder is not None:
                logger.debug(
                    f"[{account.name}] Using cached archive path {describe_destination(cached)}"
                )
                return ArchiveRoot(folder=folder, destination=cached, from_cache=True)
            logger.info(
                f"[{account.name}] Cached archive path {describe_destination(cached)} "
                "no longer resolves, searching"
            )

        for candidate in self.search_order():
            if candidate == cached:
                continue
            folder = self._try_resolve(account, candidate)
            if folder is not None:
                self.store.set(account.name, candidate)
                return ArchiveRoot(folder=folder, destination=candidate, from_cache=False)

        return None

    def require(self, account: Account) -> ArchiveRoot:
        """Like :meth:`resolve` but raises :class:`ArchiveRootNotFound`."""
        root = self.resolve(account)
        if root is None:
            raise ArchiveRootNotFound(account.name)
        return root

    def resolve_destination(self, account: Account, destination: Destination) -> FolderLike | None:
        """Look a destination up in the account's folder tree."""
        if isinstance(destination, Label):
            return find_child(account.root, destination.name)
        if isinstance(destination, RootFolder):
            return find_child(account.root, destination.name)
        if isinstance(destination, InboxSubfolder):
            inbox = find_child(account.root, account.inbox_name)
            if inbox is None:
                return None
            return find_child(inbox, destination.name)
        raise TypeError(f"Unsupported archive destination: {destination!r}")

    def _try_resolve(self, account: Account, destination: Destination) -> FolderLike | None:
        try:
            return self.resolve_destination(account, destination)
        except TypeError:
            raise
        except Exception as e:
            logger.debug(
                f"[{account.name}] Lookup of {describe_destination(destination)} failed: {e}"
            )
            return None
