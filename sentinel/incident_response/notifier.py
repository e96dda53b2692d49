"""
Real-time alert notifier

Alerts are queued by the request path and delivered by a background worker:
every notification is logged, and posted as JSON to the configured webhook
when one is set. When the worker is not running (tests, one-shot CLI use)
notifications are delivered inline.
"""

import logging
import queue
import threading
from typing import Any, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)


class AlertNotifier:
    """Queue-backed alert dispatcher"""

    def __init__(self, webhook_url: Optional[str] = None, timeout: float = 5.0,
                 queue_size: int = 1000, session: Optional[requests.Session] = None,
                 log_to_console: bool = True):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self.session = session or requests.Session()
        self.log_to_console = log_to_console

        self._queue: "queue.Queue[Dict[str, Any]]" = queue.Queue(maxsize=queue_size)
        self._worker: Optional[threading.Thread] = None
        self.is_running = False

        self.delivered = 0
        self.failed = 0
        self.dropped = 0
        self.history: List[Dict[str, Any]] = []  # Last delivered notifications
        self._history_limit = 100
        self._lock = threading.Lock()

    def notify(self, kind: str, payload: Dict[str, Any]):
        """
        Dispatch a notification without blocking the caller

        Args:
            kind: Notification kind, e.g. ``security_alert`` or ``admin_alert``
            payload: JSON-serializable body
        """
        message = {'kind': kind, 'payload': payload}
        if not self.is_running:
            self._deliver(message)
            return
        try:
            self._queue.put_nowait(message)
        except queue.Full:
            with self._lock:
                self.dropped += 1
            logger.warning(f"Alert queue full, dropping {kind} notification")

    def _deliver(self, message: Dict[str, Any]):
        kind = message['kind']
        payload = message['payload']

        if self.log_to_console:
            if kind == 'security_alert':
                logger.warning(
                    f"[SECURITY-ALERT] {', '.join(payload.get('threats', []))} from {payload.get('ip')} "
                    f"(risk {payload.get('riskScore', 0)})"
                )
            else:
                logger.warning(f"[{kind.upper()}] {payload.get('summary') or payload}")

        success = True
        if self.webhook_url:
            try:
                response = self.session.post(self.webhook_url, json=message, timeout=self.timeout)
                response.raise_for_status()
            except requests.RequestException as e:
                success = False
                logger.warning(f"Webhook delivery failed for {kind}: {e}")

        with self._lock:
            if success:
                self.delivered += 1
            else:
                self.failed += 1
            self.history.append(message)
            if len(self.history) > self._history_limit:
                self.history = self.history[-self._history_limit:]

    # ========================================================================
    # WORKER LIFECYCLE
    # ========================================================================

    def start(self):
        """Start the delivery worker"""
        if self._worker and self._worker.is_alive():
            logger.warning("Alert notifier already running")
            return

        self.is_running = True
        self._worker = threading.Thread(target=self._worker_loop, name="sentinel-notifier", daemon=True)
        self._worker.start()
        logger.info("Alert notifier started")

    def stop(self):
        """Stop the worker after draining queued notifications"""
        self.is_running = False
        if self._worker:
            self._worker.join(timeout=5)
            self._worker = None
        # Flush anything queued after the worker exited
        while True:
            try:
                self._deliver(self._queue.get_nowait())
            except queue.Empty:
                break
        logger.info("Alert notifier stopped")

    def _worker_loop(self):
        while self.is_running:
            try:
                message = self._queue.get(timeout=0.5)
            except queue.Empty:
                continue
            try:
                self._deliver(message)
            except Exception as e:
                logger.error(f"Alert delivery error: {e}")

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                'delivered': self.delivered,
                'failed': self.failed,
                'dropped': self.dropped,
                'queued': self._queue.qsize(),
            }
