"""Notification fan-out to the persistence layer and push services."""

import logging
import sqlite3
from collections.abc import Callable
from typing import TYPE_CHECKING

import httpx

from discpipe import __version__
from discpipe.error_handling import NotificationError
from discpipe.jobs.models import Notification

if TYPE_CHECKING:
    from discpipe.config import JobConfig
    from discpipe.jobs.models import Job
    from discpipe.storage.database import JobDatabase

logger = logging.getLogger(__name__)

PUSHBULLET_URL = "https://api.pushbullet.com/v2/pushes"
IFTTT_URL = "https://maker.ifttt.com/trigger/{event}/with/key/{key}"
PUSHOVER_URL = "https://api.pushover.net/1/messages.json"


class NotificationDispatcher:
    """Records every notification and pushes it to each configured channel.

    Channels are independent: one failing never stops the others and never
    reaches the caller.
    """

    def __init__(
        self,
        config: "JobConfig",
        db: "JobDatabase | None" = None,
        client: httpx.Client | None = None,
    ):
        self.config = config
        self.db = db
        self.client = client or httpx.Client(
            timeout=config.notify_request_timeout,
            headers={"User-Agent": f"discpipe/{__version__}"},
        )
        self._owns_client = client is None

    def channels(self) -> list[tuple[str, Callable[[str, str], None]]]:
        """Configured channels, in delivery order."""
        config = self.config
        channels: list[tuple[str, Callable[[str, str], None]]] = []
        if config.ntfy_topic:
            channels.append(("ntfy", self._send_ntfy))
        if config.pb_key:
            channels.append(("pushbullet", self._send_pushbullet))
        if config.ifttt_key and config.ifttt_event:
            channels.append(("ifttt", self._send_ifttt))
        if config.po_user_key and config.po_app_key:
            channels.append(("pushover", self._send_pushover))
        if config.json_url:
            channels.append(("json", self._send_json))
        return channels

    def notify(self, job: "Job | None", title: str, body: str) -> list[str]:
        """Persist, then attempt each channel. Returns the channels that delivered."""
        if self.db is not None:
            try:
                self.db.add_notification(Notification(title=title, message=body))
            except sqlite3.Error as e:
                logger.warning(f"Failed to store notification: {e}")

        delivered = []
        for name, send in self.channels():
            try:
                send(title, body)
            except NotificationError as e:
                logger.warning(e.message)
                continue
            except httpx.HTTPError as e:
                logger.warning(f"{name}: {e}")
                continue
            delivered.append(name)
            logger.debug(f"Sent notification via {name}: {title}")

        if job is not None:
            logger.info(f"Job {job.job_id} notification delivered via {delivered or 'no channels'}")
        return delivered

    def _post(self, channel: str, url: str, **kwargs: object) -> None:
        try:
            response = self.client.post(url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NotificationError(
                channel,
                f"service error {e.response.status_code}",
                original_error=e,
            ) from e
        except httpx.RequestError as e:
            raise NotificationError(channel, str(e), original_error=e) from e

    def _send_ntfy(self, title: str, body: str) -> None:
        # Header values must be latin-1
        header_title = title.encode("latin1", errors="ignore")
        self._post(
            "ntfy",
            self.config.ntfy_topic,
            content=body.encode("utf-8"),
            headers={"Title": header_title, "Tags": "discpipe"},
        )

    def _send_pushbullet(self, title: str, body: str) -> None:
        self._post(
            "pushbullet",
            PUSHBULLET_URL,
            json={"type": "note", "title": title, "body": body},
            headers={"Access-Token": self.config.pb_key},
        )

    def _send_ifttt(self, title: str, body: str) -> None:
        url = IFTTT_URL.format(event=self.config.ifttt_event, key=self.config.ifttt_key)
        self._post("ifttt", url, json={"value1": title, "value2": body})

    def _send_pushover(self, title: str, body: str) -> None:
        self._post(
            "pushover",
            PUSHOVER_URL,
            data={
                "token": self.config.po_app_key,
                "user": self.config.po_user_key,
                "title": title,
                "message": body,
            },
        )

    def _send_json(self, title: str, body: str) -> None:
        self._post("json", self.config.json_url, json={"title": title, "body": body})

    def close(self) -> None:
        if self._owns_client:
            self.client.close()
