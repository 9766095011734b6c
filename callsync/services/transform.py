"""
Record Transform

Converts one raw source record into the canonical TranscriptRecord.
Handles both the BI connector's JSON rows (query API or full export)
and the rows of tab-delimited call-log exports, whose headers differ
slightly for the same fields.

Author: CallSync Team
Date: 2026-01-12
"""

import csv
import logging
import math
import sys
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from dateutil import parser as date_parser

from callsync.common.records import TranscriptRecord
from callsync.services.conversation import decode_conversation

logger = logging.getLogger("transform")

# Canonical field -> candidate source columns, first non-empty wins
FIELD_SOURCES = {
    "vendor_call_key": ("VendorCallKey",),
    "call_start": ("CallStartDateTime",),
    "call_end": ("CallEndDateTime",),
    "duration_seconds": ("CallDurationInSeconds", "DurationInSeconds"),
    "disposition": ("CallDispositionServicing", "Disposition"),
    "number_of_holds": ("NumberOfHolds",),
    "hold_duration": ("CustomerHoldDuration",),
    "department": ("Department",),
    "status": ("VoiceCallStatus",),
    "agent_name": ("Name", "AgentName"),
    "agent_role": ("UserRoleName",),
    "agent_profile": ("ProfileName",),
    "agent_email": ("Email",),
    "conversation": ("Conversation",),
}

CALL_START_COLUMN = FIELD_SOURCES["call_start"][0]

# Conversation cells can be far larger than csv's default field limit
csv.field_size_limit(min(sys.maxsize, 2**31 - 1))


def _pick(row: Dict[str, Any], field: str) -> Any:
    for column in FIELD_SOURCES[field]:
        value = row.get(column)
        if value not in (None, ""):
            return value
    return None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a vendor timestamp into a naive UTC datetime.
    
    Returns None for empty or unparseable values.
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        try:
            parsed = date_parser.parse(str(value).strip())
        except (ValueError, OverflowError):
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_int(value: Any) -> Optional[int]:
    """Round a numeric value to int; empty or non-numeric becomes None."""
    if value in (None, "") or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return int(math.floor(number + 0.5))


def transform_record(row: Dict[str, Any]) -> Optional[TranscriptRecord]:
    """
    Transform one raw source row into a TranscriptRecord.
    
    Args:
        row: Column name -> value mapping from the vendor source
        
    Returns:
        TranscriptRecord, or None when the row has no vendor call key
    """
    vendor_call_key = _text(_pick(row, "vendor_call_key"))
    if not vendor_call_key:
        return None

    raw_conversation = _pick(row, "conversation")
    messages = decode_conversation(raw_conversation)
    if raw_conversation is not None and messages is None:
        logger.warning(f"Failed to parse conversation for {vendor_call_key}")

    return TranscriptRecord(
        vendor_call_key=vendor_call_key,
        call_start=parse_timestamp(_pick(row, "call_start")),
        call_end=parse_timestamp(_pick(row, "call_end")),
        duration_seconds=parse_int(_pick(row, "duration_seconds")),
        disposition=_text(_pick(row, "disposition")),
        number_of_holds=parse_int(_pick(row, "number_of_holds")),
        hold_duration=parse_int(_pick(row, "hold_duration")),
        department=_text(_pick(row, "department")),
        status=_text(_pick(row, "status")),
        agent_name=_text(_pick(row, "agent_name")),
        agent_role=_text(_pick(row, "agent_role")),
        agent_profile=_text(_pick(row, "agent_profile")),
        agent_email=_text(_pick(row, "agent_email")),
        messages=messages,
    )


def read_tsv_export(path: Path) -> Iterator[Dict[str, Optional[str]]]:
    """
    Yield rows of a tab-delimited call-log export as dicts.
    
    Fields are split on tabs only; quotes inside the Conversation JSON
    are data, not CSV quoting. Blank lines are skipped.
    """
    with open(path, "r", encoding="utf-8-sig", newline="") as handle:
        reader = csv.reader(handle, delimiter="\t", quoting=csv.QUOTE_NONE)
        headers = None
        for fields in reader:
            if not fields or not any(f.strip() for f in fields):
                continue
            if headers is None:
                headers = [h.strip() for h in fields]
                continue
            yield {
                header: (fields[idx] if idx < len(fields) and fields[idx] != "" else None)
                for idx, header in enumerate(headers)
            }
