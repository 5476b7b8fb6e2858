"""IMAP adapter exposing mail accounts through the folder interfaces."""

from __future__ import annotations

import email
import imaplib
import json
import logging
import re
from collections.abc import Collection, Iterable, Sequence
from datetime import datetime
from email.header import decode_header, make_header
from typing import TYPE_CHECKING

from mailarchiver.folders import Account, AccountKind, FolderLike, ItemClass

if TYPE_CHECKING:
    from mailarchiver.config import ImapAccountConfig

logger = logging.getLogger(__name__)

FETCH_BATCH_SIZE = 200

_LIST_RE = re.compile(r'^\((?P<flags>[^)]*)\)\s+(?P<delim>"(?:[^"\\]|\\.)*"|NIL)\s*(?P<name>.*)$')
_UID_RE = re.compile(rb"UID (\d+)")
_INTERNALDATE_RE = re.compile(rb'INTERNALDATE "([^"]+)"')


def quote_mailbox(name: str) -> str:
    """Quote a mailbox name for use as an IMAP astring."""
    escaped = name.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == '"' and value[-1] == '"':
        return value[1:-1].replace('\\"', '"').replace("\\\\", "\\")
    return value


def parse_list_response(item: bytes | tuple) -> tuple[set[str], str | None, str] | None:
    """Parse one LIST response item into (flags, delimiter, name).

    Servers send names containing special characters as literals, which
    imaplib returns as a (prefix, literal) tuple.
    """
    literal: str | None = None
    if isinstance(item, tuple):
        prefix, raw_literal = item[0], item[1]
        literal = raw_literal.decode("utf-8", errors="replace")
        item = prefix
    if item is None:
        return None

    line = item.decode("utf-8", errors="replace") if isinstance(item, bytes) else str(item)
    match = _LIST_RE.match(line.strip())
    if not match:
        return None

    flags = {flag.lower() for flag in match.group("flags").split()}
    delim_raw = match.group("delim")
    delimiter = None if delim_raw.upper() == "NIL" else _unquote(delim_raw)
    name = literal if literal is not None else _unquote(match.group("name"))
    return flags, delimiter, name


def parse_internaldate(value: str) -> datetime:
    """Parse an IMAP INTERNALDATE such as ``' 7-Mar-2024 09:15:00 +0100'``."""
    return datetime.strptime(value.strip(), "%d-%b-%Y %H:%M:%S %z")


def decode_subject(raw: str | None) -> str:
    """Decode an RFC 2047 encoded subject header."""
    if not raw:
        return ""
    decoded = str(make_header(decode_header(raw)))
    return re.sub(r"[\r\n]+\s*", " ", decoded).strip()


def parse_fetch_response(data: Sequence) -> list[tuple[int, str | None, bytes]]:
    """Split a ``UID FETCH`` response into (uid, internaldate, header bytes)."""
    records: list[list] = []
    for item in data:
        if isinstance(item, tuple):
            meta, payload = item[0], item[1]
            records.append([meta, payload or b""])
        elif isinstance(item, bytes) and records:
            # Attributes sent after the literal land in the trailing part
            records[-1][0] = records[-1][0] + b" " + item

    parsed = []
    for meta, payload in records:
        uid_match = _UID_RE.search(meta)
        if not uid_match:
            logger.debug(f"FETCH item without UID: {meta!r}")
            continue
        date_match = _INTERNALDATE_RE.search(meta)
        internaldate = date_match.group(1).decode("ascii", errors="replace") if date_match else None
        parsed.append((int(uid_match.group(1)), internaldate, payload))
    return parsed


class IMAPClient:
    """Connection to one IMAP account."""

    def __init__(self, config: ImapAccountConfig):
        """Initialize the IMAP client."""
        self.config = config
        self._connection: imaplib.IMAP4_SSL | None = None
        self._selected_folder: str | None = None
        self.capabilities: set[str] = set()
        self.delimiter: str = "/"

    def __enter__(self) -> IMAPClient:
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.disconnect()

    @property
    def supports_move(self) -> bool:
        return "MOVE" in self.capabilities

    @property
    def is_gmail(self) -> bool:
        return "X-GM-EXT-1" in self.capabilities

    def connect(self) -> None:
        """Connect to the IMAP server and log in.

        Raises:
            ConnectionError: If the server is unreachable or drops the
                connection during or after login
            ValueError: If authentication fails

        The connection is closed before either error is raised.
        """
        logger.info(json.dumps({"event": "connecting", "host": self.config.host, "port": self.config.port}))

        try:
            self._connection = imaplib.IMAP4_SSL(
                self.config.host,
                self.config.port,
                timeout=self.config.timeout,
            )
            logger.debug("SSL connection established")
        except (OSError, TimeoutError) as e:
            error_msg = f"Cannot connect to {self.config.host}:{self.config.port} - Check host, port, and network connection"
            logger.error(error_msg)
            raise ConnectionError(error_msg) from e

        try:
            self._connection.login(self.config.username, self.config.get_password())
            logger.info(json.dumps({"event": "logged_in", "username": self.config.username}))
        except (imaplib.IMAP4.abort, OSError) as e:
            error_msg = f"Connection to {self.config.host} lost during login: {e}"
            logger.error(error_msg)
            self.disconnect()
            raise ConnectionError(error_msg) from e
        except imaplib.IMAP4.error as e:
            error_str = str(e)
            if "AUTHENTICATIONFAILED" in error_str or "authentication" in error_str.lower():
                error_msg = f"Authentication failed for {self.config.username} - Check username and password"
            else:
                error_msg = f"IMAP error during login: {e}"
            logger.error(error_msg)
            self.disconnect()
            raise ValueError(error_msg) from e

        try:
            # Some servers only advertise extensions after authentication
            self._connection.capability()
            self.capabilities = {
                c.decode() if isinstance(c, bytes) else str(c) for c in self._connection.capabilities
            }
            self.delimiter = self._discover_delimiter()
        except (imaplib.IMAP4.error, OSError) as e:
            error_msg = f"IMAP error after login to {self.config.host}: {e}"
            logger.error(error_msg)
            self.disconnect()
            raise ConnectionError(error_msg) from e

    def disconnect(self) -> None:
        """Disconnect from the IMAP server."""
        if self._connection:
            try:
                self._connection.logout()
            except Exception as e:
                logger.warning(f"Error during logout: {e}")
            finally:
                self._connection = None
                self._selected_folder = None

    def _require_connection(self) -> imaplib.IMAP4:
        if not self._connection:
            raise RuntimeError("Not connected")
        return self._connection

    def _discover_delimiter(self) -> str:
        status, data = self._require_connection().list('""', '""')
        if status == "OK":
            for item in data or []:
                parsed = parse_list_response(item)
                if parsed and parsed[1]:
                    return parsed[1]
        return "/"

    def list_mailboxes(self, pattern: str) -> list[tuple[set[str], str]]:
        """Return (flags, full name) of mailboxes matching ``pattern``."""
        status, data = self._require_connection().list('""', quote_mailbox(pattern))
        if status != "OK":
            raise RuntimeError(f"LIST {pattern} failed: {data}")

        mailboxes = []
        for item in data or []:
            if item is None:
                continue
            parsed = parse_list_response(item)
            if parsed is None:
                logger.debug(f"Unparseable LIST response: {item!r}")
                continue
            flags, _, name = parsed
            mailboxes.append((flags, name))
        return mailboxes

    def create_mailbox(self, path: str) -> None:
        """Create a mailbox and subscribe to it."""
        connection = self._require_connection()
        logger.info(f"Creating folder: {path}")
        status, data = connection.create(quote_mailbox(path))
        if status != "OK":
            raise RuntimeError(f"Failed to create folder {path}: {data}")

        status, data = connection.subscribe(quote_mailbox(path))
        if status != "OK":
            logger.warning(f"Failed to subscribe to {path}: {data}")

    def select_folder(self, path: str) -> int:
        """Select a folder read-write. Returns the message count."""
        connection = self._require_connection()
        status, data = connection.select(quote_mailbox(path))
        if status != "OK":
            raise RuntimeError(f"Failed to select folder {path}: {data}")

        self._selected_folder = path
        try:
            return int(data[0])
        except (TypeError, ValueError, IndexError):
            return 0

    def fetch_summaries(self, path: str) -> list[tuple[int, str | None, bytes]]:
        """Fetch UID, INTERNALDATE and the Subject header of every message in ``path``."""
        self.select_folder(path)
        connection = self._require_connection()

        status, data = connection.uid("SEARCH", None, "ALL")
        if status != "OK":
            raise RuntimeError(f"SEARCH in {path} failed: {data}")
        uids = data[0].split() if data and data[0] else []

        summaries = []
        for i in range(0, len(uids), FETCH_BATCH_SIZE):
            batch = b",".join(uids[i : i + FETCH_BATCH_SIZE]).decode()
            status, fetched = connection.uid(
                "FETCH", batch, "(UID INTERNALDATE BODY.PEEK[HEADER.FIELDS (SUBJECT)])"
            )
            if status != "OK":
                raise RuntimeError(f"FETCH in {path} failed: {fetched}")
            summaries.extend(parse_fetch_response(fetched))
        return summaries

    def move_message(self, uid: int, source: str, target: str) -> None:
        """Move a message to another folder.

        Raises:
            RuntimeError: If the server rejects the move
        """
        connection = self._require_connection()
        if self._selected_folder != source:
            self.select_folder(source)

        if self.supports_move:
            try:
                status, data = connection.uid("MOVE", str(uid), quote_mailbox(target))
                if status == "OK":
                    logger.debug(f"Moved UID {uid} to {target}")
                    return
                logger.warning(f"MOVE of UID {uid} failed ({data}), falling back to COPY")
            except imaplib.IMAP4.error as e:
                logger.warning(f"MOVE of UID {uid} failed ({e}), falling back to COPY")

        status, data = connection.uid("COPY", str(uid), quote_mailbox(target))
        if status != "OK":
            raise RuntimeError(f"Failed to copy UID {uid} to {target}: {data}")

        status, data = connection.uid("STORE", str(uid), "+FLAGS", r"(\Deleted)")
        if status != "OK":
            raise RuntimeError(f"Failed to mark UID {uid} as deleted: {data}")

        connection.expunge()
        logger.debug(f"Moved UID {uid} to {target}")


class IMAPMessage:
    """A message handle; header values are decoded on access."""

    def __init__(self, client: IMAPClient, folder_path: str, uid: int, internaldate: str | None, header: bytes):
        self._client = client
        self.folder_path = folder_path
        self.uid = uid
        self._internaldate = internaldate
        self._header = header

    @property
    def subject(self) -> str:
        message = email.message_from_bytes(self._header)
        return decode_subject(message.get("Subject"))

    @property
    def received_time(self) -> datetime:
        if not self._internaldate:
            raise ValueError(f"UID {self.uid} has no INTERNALDATE")
        return parse_internaldate(self._internaldate)

    def move_to(self, destination: FolderLike) -> None:
        if not isinstance(destination, IMAPFolder):
            raise TypeError(f"Cannot move an IMAP message to {destination!r}")
        self._client.move_message(self.uid, self.folder_path, destination.path)

    def __repr__(self) -> str:
        return f"IMAPMessage(uid={self.uid}, folder={self.folder_path!r})"


class IMAPFolder:
    """A mailbox, or the namespace root when ``path`` is empty."""

    def __init__(self, client: IMAPClient, path: str, name: str | None = None):
        self._client = client
        self.path = path
        self._name = name

    @property
    def name(self) -> str:
        if self._name is not None:
            return self._name
        return self.path.rsplit(self._client.delimiter, 1)[-1]

    def _child_path(self, name: str) -> str:
        if not self.path:
            return name
        return f"{self.path}{self._client.delimiter}{name}"

    def get_child(self, name: str) -> IMAPFolder | None:
        path = self._child_path(name)
        for _, mailbox in self._client.list_mailboxes(path):
            if mailbox == path or (mailbox.upper() == "INBOX" and path.upper() == "INBOX"):
                return IMAPFolder(self._client, mailbox)
        return None

    def add_child(self, name: str) -> IMAPFolder:
        path = self._child_path(name)
        self._client.create_mailbox(path)
        return IMAPFolder(self._client, path)

    def children(self) -> Iterable[IMAPFolder]:
        pattern = self._child_path("%")
        return [IMAPFolder(self._client, mailbox) for _, mailbox in self._client.list_mailboxes(pattern)]

    def list_items(self, item_classes: Collection[ItemClass]) -> Sequence[IMAPMessage]:
        # IMAP stores only hold mail
        if ItemClass.MAIL not in item_classes:
            return []
        return [
            IMAPMessage(self._client, self.path, uid, internaldate, header)
            for uid, internaldate, header in self._client.fetch_summaries(self.path)
        ]

    def __repr__(self) -> str:
        return f"IMAPFolder({self.path!r})"


class IMAPMailClient:
    """Mail client over one IMAP connection per configured account."""

    def __init__(self, configs: list[ImapAccountConfig]):
        self.configs = list(configs)
        self._clients: dict[str, IMAPClient] = {}

    def __enter__(self) -> IMAPMailClient:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def list_accounts(self) -> list[Account]:
        """Connect every configured account; unreachable accounts are left out."""
        accounts = []
        for config in self.configs:
            client = self._clients.get(config.name)
            if client is None:
                client = IMAPClient(config)
                try:
                    client.connect()
                except (ConnectionError, ValueError) as e:
                    logger.error(f"[{config.name}] Skipping account: {e}")
                    continue
                self._clients[config.name] = client

            label_based = config.label_based if config.label_based is not None else client.is_gmail
            accounts.append(
                Account(
                    name=config.name,
                    root=IMAPFolder(client, "", name=config.name),
                    kind=AccountKind.LABEL if label_based else AccountKind.REGULAR,
                    inbox_name=config.inbox_folder,
                )
            )
        return accounts

    def close(self) -> None:
        for client in self._clients.values():
            client.disconnect()
        self._clients.clear()
