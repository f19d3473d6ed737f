from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class SubscriptionStatus(str, Enum):
    PENDING_LINK = "pending-link"
    ACTIVE = "active"
    CANCELLED = "cancelled"


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


@dataclass
class PendingLink:
    """Discord identity captured by the OAuth callback, waiting for checkout."""
    session_id: str
    discord_id: str
    username: str
    created_at: datetime
    expires_at: datetime

    @property
    def status(self) -> SubscriptionStatus:
        return SubscriptionStatus.PENDING_LINK

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session": self.session_id,
            "discordId": self.discord_id,
            "username": self.username,
            "status": self.status.value,
            "createdAt": _iso(self.created_at),
            "expiresAt": _iso(self.expires_at),
        }


@dataclass
class Subscription:
    order_id: str
    discord_id: str
    status: SubscriptionStatus
    created_at: datetime
    cancelled_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status is SubscriptionStatus.ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "orderId": self.order_id,
            "discordId": self.discord_id,
            "status": self.status.value,
            "createdAt": _iso(self.created_at),
            "cancelledAt": _iso(self.cancelled_at),
        }
