"""
EML Loader

Parses raw RFC 822 messages (.eml files, mail relay payloads) into Message
objects.

Threading follows the reply headers: a message belongs to the thread of the
first id in its References header, else of its In-Reply-To id, else it
starts a thread named after its own Message-ID. Replies therefore land in
the same thread as the message that started it.
"""

import logging
import re
import uuid
from datetime import datetime, timezone
from email import message_from_bytes, policy
from email.message import EmailMessage
from email.utils import getaddresses, parsedate_to_datetime
from pathlib import Path
from typing import List, Optional, Union

from pydantic import ValidationError

from ..common.errors import MessageFormatError
from ..common.schemas import Message, Participant

logger = logging.getLogger("confidant.ingest.eml")

_MSG_ID = re.compile(r"<([^<>\s]+)>")

NO_SUBJECT = "(no subject)"


def _clean_id(value: str) -> str:
    return value.strip().strip("<>").strip()


def _header_ids(msg: EmailMessage, name: str) -> List[str]:
    """Message ids listed in a header, in order"""
    raw = msg.get(name)
    if raw is None:
        return []
    raw = str(raw)
    ids = _MSG_ID.findall(raw)
    if ids:
        return ids
    return [_clean_id(token) for token in raw.split() if _clean_id(token)]


def _addresses(msg: EmailMessage, name: str) -> List[Participant]:
    values = [str(v) for v in msg.get_all(name, [])]
    return [
        Participant(address=addr, display_name=display or None)
        for display, addr in getaddresses(values)
        if addr.strip()
    ]


def _timestamp(msg: EmailMessage, source: str) -> datetime:
    try:
        raw = msg.get("Date")
        if raw is not None:
            return parsedate_to_datetime(str(raw))
    except (TypeError, ValueError) as e:
        logger.warning("Unparseable Date header in %s: %s", source, e)
    return datetime.now(timezone.utc)


def _body(msg: EmailMessage) -> str:
    part = msg.get_body(preferencelist=("plain", "html"))
    if part is None:
        return ""
    try:
        return part.get_content()
    except (LookupError, ValueError) as e:
        logger.warning("Could not decode message body: %s", e)
        return ""


def thread_id_for(msg: EmailMessage) -> Optional[str]:
    """Thread id from References, then In-Reply-To. None for a thread starter."""
    references = _header_ids(msg, "References")
    if references:
        return references[0]
    in_reply_to = _header_ids(msg, "In-Reply-To")
    if in_reply_to:
        return in_reply_to[0]
    return None


def parse_eml(data: Union[bytes, str], source: str = "<eml>") -> Message:
    """
    Parse one raw RFC 822 message.

    A missing Message-ID gets a generated one; a missing or unparseable Date
    becomes the current time.

    Raises:
        MessageFormatError: no usable From address, or the result fails
            Message validation
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    msg = message_from_bytes(data, policy=policy.default)

    message_ids = _header_ids(msg, "Message-ID")
    message_id = message_ids[0] if message_ids else f"msg-{uuid.uuid4()}"

    senders = _addresses(msg, "From")
    if not senders:
        raise MessageFormatError(f"Invalid message {source}: missing From address", field_errors=["from"])

    in_reply_to = _header_ids(msg, "In-Reply-To")
    try:
        message = Message(
            id=message_id,
            thread_id=thread_id_for(msg) or message_id,
            sender=senders[0],
            recipients=_addresses(msg, "To"),
            cc=_addresses(msg, "Cc"),
            subject=str(msg.get("Subject", "")).strip() or NO_SUBJECT,
            body=_body(msg),
            timestamp=_timestamp(msg, source),
            in_reply_to=in_reply_to[0] if in_reply_to else None,
        )
    except ValidationError as e:
        field_errors = [".".join(str(p) for p in err["loc"]) + f": {err['msg']}" for err in e.errors()]
        raise MessageFormatError(
            f"Invalid message {source}: {', '.join(field_errors)}",
            field_errors=field_errors,
        ) from e

    logger.debug("Parsed %s as %s in thread %s", source, message.id, message.thread_id)
    return message


def load_eml(path: Union[str, Path]) -> Message:
    """
    Load one .eml file.

    Raises:
        MessageFormatError: file unreadable or message invalid
    """
    path = Path(path)
    try:
        data = path.read_bytes()
    except IOError as e:
        raise MessageFormatError(f"Failed to read {path}: {e}") from e
    return parse_eml(data, source=str(path))


def load_eml_directory(path: Union[str, Path]) -> List[Message]:
    """Load every *.eml file in a directory, in file name order"""
    path = Path(path)
    messages = [load_eml(p) for p in sorted(path.glob("*.eml"))]
    logger.info("Loaded %d messages from %s", len(messages), path)
    return messages
