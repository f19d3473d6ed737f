# db/__init__.py
import secrets
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterator, Optional, Set, Tuple

from services.errors import ConflictError, NotFoundError

from .models import PendingLink, Subscription, SubscriptionStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_session_id() -> str:
    return secrets.token_urlsafe(24)


class SubscriptionStore:
    """
    In-memory store, process lifetime only.

    Pending links (keyed by session id) and subscriptions (keyed by order id)
    live in separate maps. A secondary index maps each Discord id to the order
    that holds (or is about to hold) its active subscription.

    Every read-then-write runs under one lock. Callers that wrap an external
    call (role grant/revoke) take a reservation first and commit or release it
    afterwards, so the lock is never held across network I/O.
    """

    def __init__(self, pending_ttl_s: int = 3600, clock: Callable[[], datetime] = utcnow):
        self.pending_ttl = timedelta(seconds=pending_ttl_s)
        self._clock = clock
        self._lock = threading.RLock()
        self._pending: Dict[str, PendingLink] = {}
        self._subscriptions: Dict[str, Subscription] = {}
        self._active_by_discord: Dict[str, str] = {}
        self._reservations: Dict[str, Tuple[str, int]] = {}
        self._cancelling: Set[str] = set()

    @contextmanager
    def transaction(self) -> Iterator["SubscriptionStore"]:
        with self._lock:
            yield self

    # ---------------------------
    # Pending links
    # ---------------------------
    def add_pending_link(self, discord_id: str, username: str = "") -> PendingLink:
        now = self._clock()
        with self.transaction():
            self._purge_expired_locked(now)
            session_id = new_session_id()
            while session_id in self._pending:
                session_id = new_session_id()
            link = PendingLink(
                session_id=session_id,
                discord_id=discord_id,
                username=username,
                created_at=now,
                expires_at=now + self.pending_ttl,
            )
            self._pending[session_id] = link
            return link

    def get_pending_link(self, session_id: str) -> Optional[PendingLink]:
        with self.transaction():
            self._purge_expired_locked(self._clock())
            return self._pending.get(session_id)

    def pop_pending_link(self, session_id: str) -> Optional[PendingLink]:
        with self.transaction():
            self._purge_expired_locked(self._clock())
            return self._pending.pop(session_id, None)

    def purge_expired(self) -> int:
        with self.transaction():
            return self._purge_expired_locked(self._clock())

    def _purge_expired_locked(self, now: datetime) -> int:
        expired = [sid for sid, link in self._pending.items() if link.is_expired(now)]
        for sid in expired:
            del self._pending[sid]
        return len(expired)

    # ---------------------------
    # Subscriptions
    # ---------------------------
    def get_subscription(self, order_id: str) -> Optional[Subscription]:
        with self.transaction():
            return self._subscriptions.get(order_id)

    def active_order_for(self, discord_id: str) -> Optional[str]:
        with self.transaction():
            return self._active_by_discord.get(discord_id)

    def _holder_locked(self, discord_id: str) -> Optional[str]:
        holder = self._active_by_discord.get(discord_id)
        if holder is None and discord_id in self._reservations:
            holder = self._reservations[discord_id][0]
        return holder

    def _check_order_owner_locked(self, order_id: str, discord_id: str) -> None:
        existing = self._subscriptions.get(order_id)
        if existing is not None and existing.is_active and existing.discord_id != discord_id:
            raise ConflictError("Order already linked to a different Discord user")

    def reserve_identity(self, discord_id: str, order_id: str) -> None:
        """
        Claim discord_id for order_id before granting the role. Replays of the
        same order stack on one reservation; each reserve must be matched by
        either release_identity or activate.
        """
        with self.transaction():
            self._check_order_owner_locked(order_id, discord_id)
            holder = self._holder_locked(discord_id)
            if holder is not None and holder != order_id:
                raise ConflictError("Discord user already has an active subscription")
            _, count = self._reservations.get(discord_id, (order_id, 0))
            self._reservations[discord_id] = (order_id, count + 1)

    def release_identity(self, discord_id: str, order_id: str) -> None:
        """Drop one reservation; the committed active index is left alone."""
        with self.transaction():
            held = self._reservations.get(discord_id)
            if held is None or held[0] != order_id:
                return
            if held[1] <= 1:
                del self._reservations[discord_id]
            else:
                self._reservations[discord_id] = (order_id, held[1] - 1)

    def activate(self, order_id: str, discord_id: str) -> Subscription:
        """Commit a reservation as an active subscription."""
        with self.transaction():
            try:
                self._check_order_owner_locked(order_id, discord_id)
                holder = self._holder_locked(discord_id)
                if holder is not None and holder != order_id:
                    raise ConflictError("Discord user already has an active subscription")
            finally:
                self.release_identity(discord_id, order_id)
            sub = Subscription(
                order_id=order_id,
                discord_id=discord_id,
                status=SubscriptionStatus.ACTIVE,
                created_at=self._clock(),
            )
            self._subscriptions[order_id] = sub
            self._active_by_discord[discord_id] = order_id
            return sub

    def claim_cancellation(self, order_id: str) -> Subscription:
        """
        Mark order_id as being cancelled. Raises NotFoundError for unknown
        orders and ConflictError when another request holds the claim.
        An already-cancelled record is returned without claiming it.
        """
        with self.transaction():
            sub = self._subscriptions.get(order_id)
            if sub is None:
                raise NotFoundError("Subscription not found")
            if sub.status is SubscriptionStatus.CANCELLED:
                return sub
            if order_id in self._cancelling:
                raise ConflictError("Cancellation already in progress")
            self._cancelling.add(order_id)
            return sub

    def release_cancellation(self, order_id: str) -> None:
        with self.transaction():
            self._cancelling.discard(order_id)

    def complete_cancellation(self, order_id: str) -> Subscription:
        with self.transaction():
            self._cancelling.discard(order_id)
            sub = self._subscriptions[order_id]
            sub.status = SubscriptionStatus.CANCELLED
            sub.cancelled_at = self._clock()
            if self._active_by_discord.get(sub.discord_id) == order_id:
                del self._active_by_discord[sub.discord_id]
            return sub

    def __len__(self) -> int:
        with self.transaction():
            return len(self._subscriptions)
