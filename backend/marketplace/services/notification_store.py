import logging
from threading import Lock
from typing import Dict, List, Optional

from marketplace import config
from marketplace.models import NotificationRecord
from marketplace.services.database import new_id, utcnow_iso
from marketplace.services.push_sender import PushSender, push_sender

logger = logging.getLogger(__name__)

MAX_LISTED = 100

_WEB_PATHS = {"booking": "bookings", "provider": "providers"}


def web_url_for(deep_link: Optional[str]) -> str:
    """Map an in-app link such as `booking:bk_123` to the web front end."""
    if not deep_link or ":" not in deep_link:
        return config.FRONTEND_URL
    kind, _, target = deep_link.partition(":")
    path = _WEB_PATHS.get(kind)
    if not path or not target:
        return config.FRONTEND_URL
    return f"{config.FRONTEND_URL}/{path}/{target}"


class NotificationStore:
    """In-memory inbox per user, newest first, with push fan-out."""

    def __init__(self, sender: Optional[PushSender] = None):
        self.sender = sender or push_sender
        self._lock = Lock()
        self._records: List[NotificationRecord] = []
        self._device_tokens: Dict[str, set[str]] = {}

    def register_device_token(self, user_id: str, device_token: str) -> bool:
        token = (device_token or "").strip()
        if not token:
            return False
        with self._lock:
            self._device_tokens.setdefault(user_id, set()).add(token)
        return True

    def device_tokens(self, user_id: str) -> List[str]:
        with self._lock:
            return sorted(self._device_tokens.get(user_id, set()))

    def create(
        self,
        user_id: str,
        title: str,
        body: str,
        category: str = "system",
        deep_link: Optional[str] = None,
    ) -> NotificationRecord:
        record = NotificationRecord(
            id=new_id("ntf"),
            user_id=user_id,
            title=title,
            body=body,
            category=category,  # type: ignore[arg-type]
            read=False,
            created_at=utcnow_iso(),
            deep_link=deep_link,
        )
        with self._lock:
            self._records.insert(0, record)
            tokens = sorted(self._device_tokens.get(user_id, set()))

        delivery = self.sender.send(
            tokens,
            title,
            body,
            {
                "notification_id": record.id,
                "category": category,
                "deep_link": deep_link or "",
                "url": web_url_for(deep_link),
            },
        )
        if delivery.stale_tokens:
            with self._lock:
                registered = self._device_tokens.get(user_id, set())
                registered.difference_update(delivery.stale_tokens)
            logger.info("Dropped %d stale device token(s) for user %s", len(delivery.stale_tokens), user_id)
        return record

    def list_for_user(self, user_id: str, unread_only: bool = False) -> List[NotificationRecord]:
        with self._lock:
            rows = [n for n in self._records if n.user_id == user_id and not (unread_only and n.read)]
        return rows[:MAX_LISTED]

    def unread_count(self, user_id: str) -> int:
        with self._lock:
            return sum(1 for n in self._records if n.user_id == user_id and not n.read)

    def mark_read(self, user_id: str, notification_id: str) -> Optional[NotificationRecord]:
        with self._lock:
            for idx, record in enumerate(self._records):
                if record.id == notification_id and record.user_id == user_id:
                    updated = record.model_copy(update={"read": True})
                    self._records[idx] = updated
                    return updated
        return None

    def mark_all_read(self, user_id: str) -> int:
        changed = 0
        with self._lock:
            for idx, record in enumerate(self._records):
                if record.user_id == user_id and not record.read:
                    self._records[idx] = record.model_copy(update={"read": True})
                    changed += 1
        return changed


notification_store = NotificationStore()
