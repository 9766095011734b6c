"""
Canonical transcript records.

Every source (vendor query rows, full-export rows, tab-delimited call
logs) is transformed into these shapes before it touches the database.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


AGENT = "agent"
CUSTOMER = "customer"


@dataclass
class Message:
    """One speaker-tagged conversation entry."""
    speaker: str
    text: str
    timestamp: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class TranscriptRecord:
    """Canonical transcript, keyed by vendor_call_key."""
    vendor_call_key: str
    call_start: Optional[datetime] = None
    call_end: Optional[datetime] = None
    duration_seconds: Optional[int] = None
    disposition: Optional[str] = None
    department: Optional[str] = None
    status: Optional[str] = None
    agent_name: Optional[str] = None
    agent_role: Optional[str] = None
    agent_profile: Optional[str] = None
    agent_email: Optional[str] = None
    number_of_holds: Optional[int] = None
    hold_duration: Optional[int] = None
    messages: Optional[List[Message]] = field(default=None)

    def to_row(self) -> Dict[str, Any]:
        """Column values for the transcript table."""
        row = asdict(self)
        row["messages"] = (
            [m.to_dict() for m in self.messages]
            if self.messages is not None else None
        )
        return row

    @classmethod
    def from_model(cls, model) -> "TranscriptRecord":
        """Build a record from a Transcript ORM row."""
        messages = None
        if model.messages is not None:
            messages = [
                Message(
                    speaker=m.get("speaker", CUSTOMER),
                    text=m.get("text") or "",
                    timestamp=m.get("timestamp"),
                )
                for m in model.messages
            ]
        return cls(
            vendor_call_key=model.vendor_call_key,
            call_start=model.call_start,
            call_end=model.call_end,
            duration_seconds=model.duration_seconds,
            disposition=model.disposition,
            department=model.department,
            status=model.status,
            agent_name=model.agent_name,
            agent_role=model.agent_role,
            agent_profile=model.agent_profile,
            agent_email=model.agent_email,
            number_of_holds=model.number_of_holds,
            hold_duration=model.hold_duration,
            messages=messages,
        )

    def conversation_text(self) -> str:
        """Speaker-tagged conversation, one message per line."""
        return "\n".join(f"{m.speaker}: {m.text}" for m in self.messages or [])
