"""
Storage Codec

JSON-safe encoding of messages, speech acts and the grant relation.
Round trips are lossless: decode(encode(x)) == x.
"""

from typing import Any, Dict

from ..common.schemas import LedgerSnapshot, Message, SpeechAct

MESSAGES = "messages"
SPEECH_ACTS = "speech_acts"
LEDGER = "ledger"
LEDGER_KEY = "grants"


def encode_message(message: Message) -> Dict[str, Any]:
    return message.model_dump(mode="json")


def decode_message(data: Dict[str, Any]) -> Message:
    return Message.model_validate(data)


def encode_speech_act(act: SpeechAct) -> Dict[str, Any]:
    return act.model_dump(mode="json")


def decode_speech_act(data: Dict[str, Any]) -> SpeechAct:
    return SpeechAct.model_validate(data)


def encode_snapshot(snapshot: LedgerSnapshot) -> Dict[str, Any]:
    return snapshot.model_dump(mode="json")


def decode_snapshot(data: Dict[str, Any]) -> LedgerSnapshot:
    return LedgerSnapshot.model_validate(data)
