"""
Data models for storage layer.

Defines the persisted records owned by the orchestrator.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class UsageRecord:
    """Per-provider usage counters for the current quota windows.

    Stored under ``usage:<provider_id>``. Only the quota tracker creates
    new records; everything else reads snapshots.
    """
    provider_id: str
    date: str  # ISO calendar day of the last recorded request
    daily_count: int = 0
    monthly_count: int = 0
    last_request_at: Optional[int] = None  # epoch milliseconds

    @property
    def month(self) -> str:
        """Calendar month (YYYY-MM) the monthly counter belongs to."""
        return self.date[:7]

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using the persisted field names."""
        return {
            "date": self.date,
            "dailyCount": self.daily_count,
            "monthlyCount": self.monthly_count,
            "lastRequestAt": self.last_request_at,
        }

    @classmethod
    def from_dict(cls, provider_id: str, data: Dict[str, Any]) -> "UsageRecord":
        """Build a record from its persisted form.

        Raises:
            KeyError, TypeError, ValueError: If the stored data is malformed
        """
        last = data.get("lastRequestAt")
        return cls(
            provider_id=provider_id,
            date=str(data["date"]),
            daily_count=int(data.get("dailyCount", 0)),
            monthly_count=int(data.get("monthlyCount", 0)),
            last_request_at=int(last) if last is not None else None,
        )


@dataclass(frozen=True)
class Credential:
    """Obfuscated provider API key as it sits in the store."""
    provider_id: str
    encrypted_key: str
