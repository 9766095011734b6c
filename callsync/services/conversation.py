"""
Conversation Decoder

Parses the nested "Conversation" JSON blob exported by the contact-center
platform into an ordered list of speaker-tagged messages.

Blob shape:
    {"conversationEntries": [
        {"sender": {"role": "Agent"}, "messageText": "...",
         "clientTimestamp": 1733900000000, "serverReceivedTimestamp": ...},
        ...
    ]}

Author: CallSync Team
Date: 2026-01-12
"""

import json
import logging
import re
from typing import Any, List, Optional

from callsync.common.records import AGENT, CUSTOMER, Message

logger = logging.getLogger("conversation")

# Sender role the source uses for the agent side of the call
AGENT_ROLE = "Agent"

HTML_ENTITIES = {
    "&#39;": "'",
    "&quot;": '"',
    "&amp;": "&",
    "&lt;": "<",
    "&gt;": ">",
    "&#x27;": "'",
    "&#x2F;": "/",
    "&nbsp;": " ",
}
_ENTITY_PATTERN = re.compile("|".join(re.escape(e) for e in HTML_ENTITIES))


def decode_html_entities(text: Optional[str]) -> Optional[str]:
    """
    Decode the fixed entity set in a single left-to-right pass.
    
    Output is never re-scanned, so "&amp;amp;" becomes "&amp;" and
    "&amp;lt;" becomes "&lt;".
    """
    if not text:
        return text
    return _ENTITY_PATTERN.sub(lambda match: HTML_ENTITIES[match.group(0)], text)


def _coerce_timestamp(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number or None


def _entry_timestamp(entry: dict) -> Optional[float]:
    """Client timestamp, else server-received timestamp; zero counts as absent."""
    return (
        _coerce_timestamp(entry.get("clientTimestamp"))
        or _coerce_timestamp(entry.get("serverReceivedTimestamp"))
    )


def decode_conversation(raw: Any) -> Optional[List[Message]]:
    """
    Decode a raw conversation value into chronologically ordered messages.
    
    Args:
        raw: JSON string or already-parsed mapping
        
    Returns:
        List[Message]: Messages sorted by timestamp, or None when the
        blob is malformed or has no entry list
    """
    if raw is None or raw == "":
        return None

    conversation = raw
    if isinstance(raw, (str, bytes)):
        try:
            conversation = json.loads(raw)
        except ValueError:
            return None

    if not isinstance(conversation, dict):
        return None

    entries = conversation.get("conversationEntries")
    if not isinstance(entries, list):
        return None

    messages = []
    sort_keys = []
    last_seen = float("-inf")
    for position, entry in enumerate(entries):
        if not isinstance(entry, dict):
            entry = {}
        sender = entry.get("sender") or {}
        role = sender.get("role") if isinstance(sender, dict) else None
        timestamp = _entry_timestamp(entry)
        text = entry.get("messageText")
        text = "" if text is None else str(text)

        messages.append(Message(
            speaker=AGENT if role == AGENT_ROLE else CUSTOMER,
            text=decode_html_entities(text),
            timestamp=timestamp,
        ))
        # Untimed entries stay right after the entry that preceded them
        if timestamp is not None:
            last_seen = timestamp
        sort_keys.append((last_seen, position))

    order = sorted(range(len(messages)), key=lambda i: sort_keys[i])
    return [messages[i] for i in order]
