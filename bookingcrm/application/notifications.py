"""
Local notification sinks.

The engines only ever call `fire(title, body, tag=..., require_interaction=...)`.
Tags let the receiving device collapse duplicates; the engines do their own
once-only bookkeeping.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Protocol

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    def fire(self, title: str, body: str, *, tag: str, require_interaction: bool = False) -> None:
        ...


class LoggingNotificationSink:
    """Headless sink: notifications only go to the log."""

    def fire(self, title: str, body: str, *, tag: str, require_interaction: bool = False) -> None:
        logger.info("Notification [%s] %s: %s", tag, title, body)


class WebPushNotificationSink:
    """
    Deliver notifications to every subscribed device via Web Push.

    Delivery runs on a single background worker with its own DB session,
    so a slow push service never holds up the poll loop.
    """

    def __init__(self, session_factory=None):
        self._session_factory = session_factory
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="webpush")

    def fire(self, title: str, body: str, *, tag: str, require_interaction: bool = False) -> None:
        payload = {
            "title": title,
            "body": body,
            "tag": tag,
            "requireInteraction": require_interaction,
        }
        self._executor.submit(self._deliver, payload)

    def _deliver(self, payload: dict) -> None:
        from bookingcrm.application.push_service import send_push_to_all
        from bookingcrm.infrastructure.db.session import get_session_factory

        Session = self._session_factory or get_session_factory()
        db = Session()
        try:
            sent = send_push_to_all(db, payload)
            logger.debug("Push [%s] delivered to %d device(s)", payload["tag"], sent)
        except Exception:
            logger.exception("Push delivery failed for tag=%s", payload["tag"])
        finally:
            db.close()

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)


def notify(sink: NotificationSink | None, title: str, body: str, *, tag: str,
           require_interaction: bool = False) -> None:
    """Fire-and-forget: a failing sink is logged and never breaks the caller."""
    if sink is None:
        return
    try:
        sink.fire(title, body, tag=tag, require_interaction=require_interaction)
    except Exception:
        logger.exception("Notification sink failed for tag=%s", tag)
