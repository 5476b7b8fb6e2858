"""Tests for archive root resolution."""

import pytest

from fakes import make_account

from mailarchiver.config import InboxSubfolder, Label, RootFolder
from mailarchiver.locator import ArchiveLocator, ArchivePathStore, ArchiveRootNotFound


class TestArchivePathStore:
    """Tests for the write-through path store."""

    def test_set_persists_changes(self):
        persisted = []
        store = ArchivePathStore(on_change=persisted.append)

        store.set("A", RootFolder(name="Archive"))

        assert store.get("A") == RootFolder(name="Archive")
        assert persisted == [{"A": RootFolder(name="Archive")}]

    def test_unchanged_value_not_persisted(self):
        persisted = []
        store = ArchivePathStore({"A": RootFolder(name="Archive")}, on_change=persisted.append)

        store.set("A", RootFolder(name="Archive"))

        assert persisted == []

    def test_persist_failure_is_not_fatal(self):
        def broken(paths):
            raise OSError("read-only file system")

        store = ArchivePathStore(on_change=broken)
        store.set("A", Label(name="Archive"))

        assert store.get("A") == Label(name="Archive")

    def test_initial_mapping_is_copied(self):
        initial = {"A": RootFolder(name="Archive")}
        store = ArchivePathStore(initial)
        store.set("B", RootFolder(name="Archive"))

        assert "B" not in initial
        assert "B" in store
        assert len(store) == 2


class TestArchiveLocator:
    """Tests for ArchiveLocator."""

    def test_inbox_subfolder_found_first(self):
        account = make_account("A", archive="inbox")
        account.root.folder("Archive")
        locator = ArchiveLocator(ArchivePathStore())

        root = locator.resolve(account)

        assert root is not None
        assert root.destination == InboxSubfolder(name="Archive")
        assert root.folder.path == "A/Inbox/Archive"
        assert root.from_cache is False

    def test_root_folder_found(self):
        account = make_account("A", archive="root")
        locator = ArchiveLocator(ArchivePathStore())

        root = locator.resolve(account)

        assert root.destination == RootFolder(name="Archive")
        assert root.folder.path == "A/Archive"

    def test_label_found_last(self):
        account = make_account("G", archive=None)
        account.root.folder("Old Mail")
        locator = ArchiveLocator(ArchivePathStore(), label_name="Old Mail")

        root = locator.resolve(account)

        assert root.destination == Label(name="Old Mail")
        assert root.describe() == "label:Old Mail"

    def test_label_found_by_enumeration_when_lookup_unsupported(self):
        account = make_account("G", archive=None)
        account.root.folder("Old Mail")
        account.root.lookup_supported = False
        locator = ArchiveLocator(ArchivePathStore(), label_name="Old Mail")

        root = locator.resolve(account)

        assert root is not None
        assert root.folder.name == "Old Mail"

    def test_not_found(self):
        account = make_account("A", archive=None)
        store = ArchivePathStore()
        locator = ArchiveLocator(store)

        assert locator.resolve(account) is None
        assert "A" not in store

    def test_require_raises(self):
        account = make_account("A", archive=None)
        locator = ArchiveLocator(ArchivePathStore())

        with pytest.raises(ArchiveRootNotFound) as exc_info:
            locator.require(account)
        assert exc_info.value.account_name == "A"

    def test_cached_destination_used(self):
        account = make_account("A", archive="root")
        account.root.folder("Keep")
        store = ArchivePathStore({"A": RootFolder(name="Keep")})
        locator = ArchiveLocator(store)

        root = locator.resolve(account)

        assert root.from_cache is True
        assert root.folder.name == "Keep"

    def test_stale_cache_falls_back_and_overwrites(self):
        account = make_account("A", archive="root")
        persisted = []
        store = ArchivePathStore({"A": Label(name="OldArchive")}, on_change=persisted.append)
        locator = ArchiveLocator(store)

        root = locator.resolve(account)

        assert root.destination == RootFolder(name="Archive")
        assert root.from_cache is False
        assert store.get("A") == RootFolder(name="Archive")
        assert persisted[-1]["A"] == RootFolder(name="Archive")

    def test_fallback_then_cache(self):
        account = make_account("A", archive="root")
        store = ArchivePathStore()
        locator = ArchiveLocator(store)

        first = locator.resolve(account)
        assert first.from_cache is False
        assert account.root.log.lookups == ["A/Inbox", "A/Inbox/Archive", "A/Archive"]
        assert store.get("A") == RootFolder(name="Archive")

        lookups_before = len(account.root.log.lookups)
        second = locator.resolve(account)

        assert second.from_cache is True
        assert second.folder is first.folder
        assert account.root.log.lookups[lookups_before:] == ["A/Archive"]

    def test_cached_path_survives_broken_search(self):
        account = make_account("A", archive="root")
        account.root.folder("Inbox").fail_lookup = True
        store = ArchivePathStore()
        locator = ArchiveLocator(store)

        assert locator.resolve(account).destination == RootFolder(name="Archive")

        second = locator.resolve(account)
        assert second.from_cache is True
        assert second.destination == RootFolder(name="Archive")

    def test_lookup_errors_advance_to_next_step(self):
        account = make_account("A", archive="root")
        account.root.folder("Inbox").fail_lookup = True
        locator = ArchiveLocator(ArchivePathStore())

        root = locator.resolve(account)

        assert root.destination == RootFolder(name="Archive")

    def test_failed_cached_destination_not_searched_twice(self):
        account = make_account("A", archive=None)
        store = ArchivePathStore({"A": InboxSubfolder(name="Archive")})
        locator = ArchiveLocator(store)

        assert locator.resolve(account) is None
        assert account.root.log.lookups.count("A/Inbox/Archive") == 1

    def test_custom_archive_folder_name(self):
        account = make_account("A", archive=None)
        account.root.folder("Archiv")
        locator = ArchiveLocator(ArchivePathStore(), archive_folder_name="Archiv")

        assert locator.resolve(account).destination == RootFolder(name="Archiv")
