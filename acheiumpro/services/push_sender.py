import logging
from threading import Lock
from typing import List, Optional

import firebase_admin
from firebase_admin import credentials, messaging

from acheiumpro import config

logger = logging.getLogger(__name__)


class PushSender:
    def __init__(self, credentials_path: Optional[str] = None):
        self._lock = Lock()
        self._credentials_path = config.FIREBASE_CREDENTIALS_PATH if credentials_path is None else credentials_path
        self._initialized = False
        self._enabled = False

    @property
    def enabled(self) -> bool:
        self._ensure_initialized()
        return self._enabled

    def _ensure_initialized(self) -> None:
        if self._initialized:
            return
        with self._lock:
            if self._initialized:
                return
            if not self._credentials_path:
                self._initialized = True
                self._enabled = False
                logger.info("Push sender disabled: FIREBASE_CREDENTIALS_PATH not set")
                return
            try:
                cred = credentials.Certificate(self._credentials_path)
                if not firebase_admin._apps:  # pylint: disable=protected-access
                    firebase_admin.initialize_app(cred)
                self._enabled = True
                logger.info("Push sender initialized")
            except (ValueError, OSError):
                self._enabled = False
                logger.exception("Push sender disabled: Firebase init failed")
            finally:
                self._initialized = True

    def send_notification(
        self,
        tokens: List[str],
        title: str,
        body: str,
        data: dict[str, str],
    ) -> List[str]:
        """Send to every token and return the ones Firebase reported as invalid."""
        self._ensure_initialized()
        if not self._enabled or not tokens:
            return []
        message = messaging.MulticastMessage(
            notification=messaging.Notification(title=title, body=body),
            tokens=tokens,
            data=data,
        )
        batch = messaging.send_each_for_multicast(message)
        invalid: List[str] = []
        for idx, response in enumerate(batch.responses):
            if response.success:
                continue
            error_text = str(response.exception).lower() if response.exception else ""
            if "registration token" in error_text or "invalid argument" in error_text:
                invalid.append(tokens[idx])
        if batch.failure_count and len(invalid) < batch.failure_count:
            logger.warning("Push send had %s failures (%s invalid tokens)", batch.failure_count, len(invalid))
        return invalid


push_sender = PushSender()
