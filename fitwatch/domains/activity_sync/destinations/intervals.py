"""
Intervals.icu destination.

Uploads activity files to an athlete's Intervals.icu account using the
activities upload endpoint and API-key basic auth.
"""

import threading
from pathlib import Path
from typing import Optional

import httpx
from loguru import logger

from fitwatch.models.errors import ConfigurationError, DispatchCancelled, PushError, RemoteConflictError
from fitwatch.models.schemas import Artifact, DeliveryReceipt
from fitwatch.utils.config import Settings, get_settings
from fitwatch.utils.helpers import activity_name_from_filename

DEFAULT_BASE_URL = "https://intervals.icu"
CONNECT_TIMEOUT = 10.0  # seconds


class IntervalsDestination:
    """Pushes activity files to Intervals.icu."""

    name = "intervals.icu"

    def __init__(
        self,
        athlete_id: Optional[str],
        api_key: Optional[str],
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 60.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize Intervals.icu destination.

        Args:
            athlete_id: Intervals.icu athlete id (e.g. "i12345")
            api_key: Personal API key from the Intervals.icu settings page
            base_url: API root, overridable for testing
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.athlete_id = athlete_id
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls, settings: Settings = None) -> "IntervalsDestination":
        """Build the destination from application settings."""
        settings = settings or get_settings()
        return cls(
            athlete_id=settings.intervals_athlete_id,
            api_key=settings.intervals_api_key,
            base_url=settings.intervals_base_url,
            timeout=settings.http_timeout,
        )

    def validate(self) -> None:
        """Check credentials are present."""
        if not self.athlete_id:
            raise ConfigurationError("athlete ID is required")
        if not self.api_key:
            raise ConfigurationError("API key is required")

    def upload_url(self) -> str:
        """Activities upload endpoint for the configured athlete."""
        return f"{self.base_url}/api/v1/athlete/{self.athlete_id}/activities"

    def push(self, artifact: Artifact, stop_event: threading.Event) -> DeliveryReceipt:
        """Upload ``artifact`` as a multipart form."""
        if stop_event.is_set():
            raise DispatchCancelled("shutdown requested before upload")

        path = Path(artifact.path)
        try:
            content = path.read_bytes()
        except OSError as e:
            raise PushError(f"open file: {e}") from e

        data = {}
        name = artifact.metadata.activity_name or activity_name_from_filename(path.name)
        if name:
            data["name"] = name

        files = {"file": (path.name, content, "application/octet-stream")}
        timeout = httpx.Timeout(self.timeout, connect=min(CONNECT_TIMEOUT, self.timeout))

        if stop_event.is_set():
            raise DispatchCancelled("shutdown requested before upload")

        try:
            with httpx.Client(timeout=timeout, transport=self.transport) as client:
                response = client.post(
                    self.upload_url(),
                    data=data,
                    files=files,
                    auth=("API_KEY", self.api_key or ""),
                )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise PushError(f"send request: {e}") from e

        if response.status_code == 409:
            remote_id = _activity_id(response)
            raise RemoteConflictError(
                f"activity already exists: {response.text[:200]}",
                remote_id=remote_id,
                remote_url=self._activity_url(remote_id),
            )

        if response.status_code >= 400:
            raise PushError(f"API error {response.status_code}: {response.text[:500]}")

        remote_id = _activity_id(response)
        logger.debug(f"Intervals.icu accepted {path.name} as {remote_id}")

        return DeliveryReceipt(remote_id=remote_id, remote_url=self._activity_url(remote_id))

    def _activity_url(self, remote_id: Optional[str]) -> Optional[str]:
        if not remote_id:
            return None
        return f"{self.base_url}/activities/{remote_id}"


def _activity_id(response: httpx.Response) -> Optional[str]:
    """Pull the activity id out of an upload response body, if there is one."""
    try:
        payload = response.json()
    except ValueError:
        return None

    if isinstance(payload, list):
        payload = payload[0] if payload else {}
    if not isinstance(payload, dict):
        return None

    remote_id = payload.get("id")
    return str(remote_id) if remote_id is not None else None
