"""
IMAP mailbox client.

Fetches unread trade confirmation emails and archives them once the pipeline
reaches a terminal outcome. This is the only component that changes mailbox
state: messages are fetched with BODY.PEEK so they stay unread until archived.

Usage:
    with ImapClient(load_imap_config()) as mailbox:
        for message in mailbox.fetch_pending(since_cursor=0):
            ...
            mailbox.archive(message.message_id, "approved")
"""

import email
import imaplib
from datetime import UTC, datetime
from email.header import decode_header
from email.utils import parseaddr, parsedate_to_datetime
from typing import Callable, Iterator, Optional

from config.pipeline_config import ImapConfig
from ingest.errors import MailboxConnectionError
from ingest.logging_config import get_logger
from ingest.types import IncomingMessage

logger = get_logger(__name__)

REJECTED_OUTCOMES = ("rejected",)


def quote_mailbox_name(folder_name: str) -> str:
    escaped = folder_name.replace("\\", "\\\\").replace('"', r'\"')
    return f'"{escaped}"'


def decode_imap_response(data: object) -> str:
    if not isinstance(data, list):
        return ""
    parts: list[str] = []
    for item in data:
        if item is None:
            continue
        if isinstance(item, bytes):
            parts.append(item.decode("utf-8", errors="replace"))
        else:
            parts.append(str(item))
    return " | ".join(parts).strip()


def _header_to_str(value) -> str:
    """Decode MIME encoded-words (=?UTF-8?B?...?=) into a plain string."""
    if value is None:
        return ""
    parts = []
    for fragment, charset in decode_header(str(value)):
        if isinstance(fragment, bytes):
            parts.append(fragment.decode(charset or "utf-8", errors="replace"))
        else:
            parts.append(fragment)
    return "".join(parts).strip()


def _decode_part(part) -> str:
    payload = part.get_payload(decode=True)
    if not payload:
        return ""
    charset = part.get_content_charset() or "utf-8"
    try:
        return payload.decode(charset, errors="replace")
    except LookupError:
        return payload.decode("utf-8", errors="replace")


def parse_message(uid: int, raw: bytes, host: str = "localhost") -> IncomingMessage:
    """
    Parse raw RFC 822 bytes into an IncomingMessage.

    A message without a Message-ID gets a synthetic one built from its UID.
    A missing or unparseable Date header falls back to now (UTC).
    """
    msg = email.message_from_bytes(raw)

    message_id = _header_to_str(msg.get("Message-ID"))
    if not message_id:
        message_id = f"<uid-{uid}@{host}>"

    from_name, from_address = parseaddr(_header_to_str(msg.get("From")))

    try:
        received_at = parsedate_to_datetime(_header_to_str(msg.get("Date")))
        if received_at.tzinfo is None:
            received_at = received_at.replace(tzinfo=UTC)
    except (TypeError, ValueError, IndexError):
        received_at = datetime.now(UTC)

    text_parts = []
    html_parts = []
    for part in msg.walk():
        if part.is_multipart():
            continue
        if "attachment" in str(part.get("Content-Disposition", "")).lower():
            continue
        content_type = part.get_content_type()
        if content_type == "text/plain":
            text_parts.append(_decode_part(part))
        elif content_type == "text/html":
            html_parts.append(_decode_part(part))

    return IncomingMessage(
        uid=uid,
        message_id=message_id,
        subject=_header_to_str(msg.get("Subject")),
        from_address=from_address.lower(),
        from_name=from_name,
        received_at=received_at,
        text_body="\n".join(text_parts),
        html_body="\n".join(html_parts),
    )


class ImapClient:
    """Connection to one IMAP mailbox."""

    def __init__(self, config: ImapConfig, imap_factory: Optional[Callable] = None):
        """
        Args:
            config: Mailbox settings
            imap_factory: Callable(host, port, timeout) returning an imaplib-like
                connection. Defaults to IMAP4_SSL or IMAP4 per config.use_tls.
        """
        self.config = config
        self._imap_factory = imap_factory
        self._imap = None
        self._known_folders: set[str] = set()

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    @property
    def connected(self) -> bool:
        return self._imap is not None

    def connect(self) -> None:
        """
        Connect, log in and select the configured mailbox.

        Raises:
            MailboxConnectionError: On network, TLS or authentication failure
        """
        if self._imap is not None:
            return

        factory = self._imap_factory or (imaplib.IMAP4_SSL if self.config.use_tls else imaplib.IMAP4)
        try:
            imap = factory(self.config.host, self.config.port, timeout=self.config.timeout)
            imap.login(self.config.username, self.config.app_password)
            status, data = imap.select(quote_mailbox_name(self.config.mailbox), readonly=False)
        except (imaplib.IMAP4.error, OSError) as e:
            raise MailboxConnectionError(
                f"IMAP connection to {self.config.host}:{self.config.port} failed: {e}"
            ) from e

        if status != "OK":
            raise MailboxConnectionError(
                f"Could not select mailbox {self.config.mailbox}: {decode_imap_response(data)}"
            )

        self._imap = imap
        logger.info(f"Connected to IMAP {self.config.host} as {self.config.username}")

    def disconnect(self) -> None:
        if self._imap is None:
            return
        imap, self._imap = self._imap, None
        try:
            imap.close()
            imap.logout()
        except (imaplib.IMAP4.error, OSError) as e:
            logger.debug(f"IMAP logout failed (ignored): {e}")

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.disconnect()
        return False

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    def search_pending_uids(self, since_cursor: int = 0) -> list[int]:
        """Unread message UIDs greater than the cursor, oldest first."""
        self.connect()
        try:
            status, data = self._imap.uid("SEARCH", None, "UNSEEN", "UID", f"{since_cursor + 1}:*")
        except (imaplib.IMAP4.error, OSError) as e:
            raise MailboxConnectionError(f"IMAP search failed: {e}") from e
        if status != "OK":
            raise MailboxConnectionError(f"IMAP search failed: {decode_imap_response(data)}")

        raw = data[0] if data and data[0] else b""
        if isinstance(raw, bytes):
            raw = raw.decode()
        # "N:*" always includes the newest message, even when its UID < N
        return sorted(uid for uid in (int(token) for token in raw.split()) if uid > since_cursor)

    def fetch_pending(self, since_cursor: int = 0) -> Iterator[IncomingMessage]:
        """
        Yield unread messages with UID > since_cursor in arrival order.

        The iterator is finite (at most fetch_limit messages) and not
        restartable; call again with the last UID seen to continue.
        """
        uids = self.search_pending_uids(since_cursor)[: self.config.fetch_limit]
        logger.info(f"Found {len(uids)} pending message(s) after UID {since_cursor}")

        for uid in uids:
            raw = self._fetch_raw(uid)
            if raw is None:
                logger.warning(f"UID {uid} vanished before fetch; skipping")
                continue
            yield parse_message(uid, raw, self.config.host)

    def _fetch_raw(self, uid: int) -> Optional[bytes]:
        try:
            status, data = self._imap.uid("FETCH", str(uid), "(BODY.PEEK[])")
        except (imaplib.IMAP4.error, OSError) as e:
            raise MailboxConnectionError(f"IMAP fetch of UID {uid} failed: {e}") from e
        if status != "OK":
            raise MailboxConnectionError(f"IMAP fetch of UID {uid} failed: {decode_imap_response(data)}")

        for item in data or []:
            if isinstance(item, tuple) and len(item) >= 2:
                return item[1]
        return None

    # ------------------------------------------------------------------
    # Archive
    # ------------------------------------------------------------------

    def archive(self, message_id: str, outcome: str) -> bool:
        """
        Move a message out of the inbox after processing.

        Rejected messages go to the rejected folder, everything else to the
        processed folder. Failures are logged and reported as False, never
        raised.
        """
        folder = (
            self.config.rejected_folder if outcome in REJECTED_OUTCOMES else self.config.processed_folder
        )
        try:
            self.connect()
            uid = self._find_uid(message_id)
            if uid is None:
                logger.warning(
                    f"Cannot archive: message not found in {self.config.mailbox}",
                    extra={"message_id": message_id},
                )
                return False

            self._ensure_folder(folder)
            self._imap.uid("STORE", uid, "+FLAGS.SILENT", r"(\Seen)")
            moved, detail = self._move(uid, folder)
        except (MailboxConnectionError, imaplib.IMAP4.error, OSError) as e:
            logger.warning(f"Archive to {folder} failed: {e}", extra={"message_id": message_id})
            return False

        if not moved:
            logger.warning(f"Archive to {folder} failed: {detail}", extra={"message_id": message_id})
            return False

        logger.info(f"Archived message ({detail})", extra={"message_id": message_id})
        return True

    def _find_uid(self, message_id: str) -> Optional[str]:
        status, data = self._imap.uid("SEARCH", None, "HEADER", "Message-ID", f'"{message_id}"')
        if status != "OK" or not data or not data[0]:
            return None
        raw = data[0].decode() if isinstance(data[0], bytes) else str(data[0])
        uids = raw.split()
        return uids[0] if uids else None

    def _ensure_folder(self, folder: str) -> None:
        if folder in self._known_folders:
            return
        status, data = self._imap.list('""', quote_mailbox_name(folder))
        if status != "OK" or not data or data[0] is None:
            status, data = self._imap.create(quote_mailbox_name(folder))
            if status != "OK":
                raise MailboxConnectionError(
                    f"Could not create mailbox {folder}: {decode_imap_response(data)}"
                )
        self._known_folders.add(folder)

    def _move(self, uid: str, folder: str) -> tuple[bool, str]:
        target_mailbox = quote_mailbox_name(folder)

        try:
            move_status, move_data = self._imap.uid("MOVE", uid, target_mailbox)
        except imaplib.IMAP4.error as e:
            # Server without the MOVE extension
            move_status, move_data = "NO", [str(e).encode()]
        if move_status == "OK":
            return True, f"moved to {folder}"

        copy_status, copy_data = self._imap.uid("COPY", uid, target_mailbox)
        if copy_status != "OK":
            detail = decode_imap_response(copy_data) or decode_imap_response(move_data) or "copy failed"
            return False, detail

        store_status, store_data = self._imap.uid("STORE", uid, "+FLAGS.SILENT", r"(\Deleted)")
        if store_status != "OK":
            return False, decode_imap_response(store_data) or "store-delete flag failed"

        expunge_status, expunge_data = self._imap.expunge()
        if expunge_status != "OK":
            return False, decode_imap_response(expunge_data) or "expunge failed"

        return True, f"copied+expunged to {folder}"
