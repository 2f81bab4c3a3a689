"""
Message Loader

Reads message fixtures and exports from JSON files.

Accepted shapes:
    {"messages": [ {...}, ... ]}
    [ {...}, ... ]

Field names from mail exports are accepted as aliases
(message_id/from/to and email/name for addresses).
"""

import json
import logging
from pathlib import Path
from typing import Any, List, Union

from pydantic import ValidationError

from ..common.errors import MessageFormatError
from ..common.schemas import Message

logger = logging.getLogger("confidant.ingest.loader")


def parse_messages(data: Any, source: str = "<data>") -> List[Message]:
    """Validate raw message dicts into Message objects."""
    if isinstance(data, dict):
        data = data.get("messages", data.get("emails"))
    if not isinstance(data, list):
        raise MessageFormatError(f"Invalid message file {source}: expected a list of messages")

    messages = []
    field_errors = []
    for i, item in enumerate(data):
        try:
            messages.append(Message.model_validate(item))
        except ValidationError as e:
            for err in e.errors():
                path = ".".join(str(p) for p in err["loc"])
                field_errors.append(f"messages.{i}.{path}: {err['msg']}")

    if field_errors:
        raise MessageFormatError(
            f"Invalid message format in {source}: {', '.join(field_errors)}",
            field_errors=field_errors,
        )
    return messages


def load_messages(path: Union[str, Path]) -> List[Message]:
    """
    Load and validate messages from a JSON file.

    Raises:
        MessageFormatError: file unreadable or any message invalid
    """
    path = Path(path)
    try:
        with open(path) as f:
            data = json.load(f)
    except (json.JSONDecodeError, IOError) as e:
        raise MessageFormatError(f"Failed to load messages from {path}: {e}") from e

    messages = parse_messages(data, source=str(path))
    logger.info("Loaded %d messages from %s", len(messages), path)
    return messages
