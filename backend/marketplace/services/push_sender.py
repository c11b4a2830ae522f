import logging
from dataclasses import dataclass, field
from threading import Lock
from typing import Dict, List, Optional

import firebase_admin
from firebase_admin import credentials, exceptions, messaging

from marketplace import config

logger = logging.getLogger(__name__)


@dataclass
class PushDelivery:
    sent: int = 0
    failed: int = 0
    # Tokens the push service reported as unknown or malformed.
    stale_tokens: List[str] = field(default_factory=list)


class PushSender:
    """Firebase Cloud Messaging delivery for in-app notifications.

    The Firebase app is initialised lazily on first use. Without a
    credentials path every send is a no-op that reports nothing sent.
    """

    def __init__(self, credentials_path: Optional[str] = None):
        self.credentials_path = config.FIREBASE_CREDENTIALS_PATH if credentials_path is None else credentials_path
        self._lock = Lock()
        self._ready = False
        self._enabled = False

    @property
    def enabled(self) -> bool:
        self._setup()
        return self._enabled

    def _setup(self) -> None:
        if self._ready:
            return
        with self._lock:
            if self._ready:
                return
            self._ready = True
            if not self.credentials_path:
                logger.info("Push delivery disabled: FIREBASE_CREDENTIALS_PATH not set")
                return
            try:
                certificate = credentials.Certificate(self.credentials_path)
                if not firebase_admin._apps:  # pylint: disable=protected-access
                    firebase_admin.initialize_app(certificate)
            except (ValueError, OSError):
                logger.exception("Push delivery disabled: could not load Firebase credentials")
                return
            self._enabled = True
            logger.info("Push delivery enabled")

    def send(self, tokens: List[str], title: str, body: str, data: Dict[str, str]) -> PushDelivery:
        if not tokens or not self.enabled:
            return PushDelivery()
        message = messaging.MulticastMessage(
            notification=messaging.Notification(title=title, body=body),
            data=data,
            tokens=tokens,
        )
        try:
            batch = messaging.send_each_for_multicast(message)
        except exceptions.FirebaseError:
            logger.exception("Push delivery failed for %d device(s)", len(tokens))
            return PushDelivery(failed=len(tokens))

        delivery = PushDelivery(sent=batch.success_count, failed=batch.failure_count)
        for token, response in zip(tokens, batch.responses):
            if response.success:
                continue
            if isinstance(response.exception, (messaging.UnregisteredError, exceptions.InvalidArgumentError)):
                delivery.stale_tokens.append(token)
        return delivery


push_sender = PushSender()
