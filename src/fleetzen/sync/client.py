"""Submission client — hand finished drafts to the FleetZen backend.

- POST /api/interventions — the intervention fields plus ``tempId``
- POST /api/interventions/photos — multipart photo upload for the created
  intervention
- GET {health_path} — reachability probe
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from fleetzen.errors.draft_errors import SubmissionError

if TYPE_CHECKING:
    from fleetzen.config.settings import SyncConfig
    from fleetzen.engine.models.snapshot import Draft, PhotoRef

logger = logging.getLogger(__name__)


def build_submission_body(draft: Draft) -> dict[str, Any]:
    """Flatten a draft into the JSON body the backend expects.

    Form fields sit at the top level next to the intervention metadata.
    Metadata keys win over payload keys of the same name.
    """
    body: dict[str, Any] = dict(draft.payload)
    body.update(
        {
            "tempId": draft.id,
            "type": draft.intervention_type.value,
            "createdAt": draft.created_at.isoformat(),
        }
    )
    for key, value in (
        ("clientId", draft.client_ref),
        ("siteId", draft.site_ref),
        ("vehicleId", draft.vehicle_ref),
        ("agentId", draft.agent_id),
    ):
        if value is not None:
            body[key] = value
    return body


class SubmissionClient:
    """Async HTTP client for the intervention submission endpoint.

    Usage::

        client = SubmissionClient(config.sync)
        await client.connect()
        try:
            remote_id = await client.submit(draft, photos)
        finally:
            await client.close()
    """

    def __init__(self, config: SyncConfig) -> None:
        self._config = config
        self._client: httpx.AsyncClient | None = None

    async def connect(self) -> None:
        """Create the underlying HTTP client."""
        headers: dict[str, str] = {"Accept": "application/json"}
        if self._config.token:
            headers["Authorization"] = f"Bearer {self._config.token}"

        self._client = httpx.AsyncClient(
            base_url=self._config.base_url.rstrip("/"),
            headers=headers,
            timeout=self._config.timeout,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def is_connected(self) -> bool:
        """Check if the HTTP client is active."""
        return self._client is not None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def submit(self, draft: Draft, photos: list[tuple[PhotoRef, bytes]]) -> str:
        """Submit one draft and its photos.

        Args:
            draft: The draft, already marked ``sync-pending``.
            photos: ``(ref, bytes)`` pairs in insertion order.

        Returns:
            The intervention id assigned by the backend (the draft id when
            the backend does not return one).

        Raises:
            SubmissionError: Transport failure or non-2xx response.
        """
        client = self._ensure_connected()

        try:
            response = await client.post("/api/interventions", json=build_submission_body(draft))
        except httpx.HTTPError as exc:
            raise SubmissionError(f"network error: {exc}") from exc
        self._raise_for_status(response, "submit")

        remote_id = _extract_id(response) or draft.id
        logger.debug("Draft %s accepted as intervention %s", draft.id, remote_id)

        if photos:
            await self._upload_photos(client, remote_id, photos)
        return remote_id

    async def ping(self) -> bool:
        """Whether the backend answered the health probe.

        Any HTTP response below 500 counts as reachable.
        """
        client = self._ensure_connected()
        try:
            response = await client.get(self._config.health_path)
        except httpx.HTTPError as exc:
            logger.debug("Backend unreachable: %s", exc)
            return False
        return response.status_code < 500

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _upload_photos(
        self,
        client: httpx.AsyncClient,
        remote_id: str,
        photos: list[tuple[PhotoRef, bytes]],
    ) -> None:
        files = [(ref.photo_key, (ref.file_name, data, ref.mime_type)) for ref, data in photos]
        try:
            response = await client.post(
                "/api/interventions/photos",
                data={"interventionId": remote_id},
                files=files,
            )
        except httpx.HTTPError as exc:
            raise SubmissionError(f"photo upload network error: {exc}") from exc
        self._raise_for_status(response, "photo upload")

    def _ensure_connected(self) -> httpx.AsyncClient:
        """Return the HTTP client, raising if not connected."""
        if self._client is None:
            msg = "submission client not connected. Call connect() first."
            raise SubmissionError(msg, status_code=500)
        return self._client

    @staticmethod
    def _raise_for_status(response: httpx.Response, operation: str) -> None:
        """Raise a SubmissionError from a non-2xx response."""
        if response.is_success:
            return
        status = response.status_code
        detail = response.text
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            detail = body.get("error") or body.get("message") or detail

        reason = f"{operation} rejected (HTTP {status})"
        if detail:
            reason = f"{reason}: {detail}"
        raise SubmissionError(reason, status_code=status)


def _extract_id(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    value = body.get("id")
    if value is None and isinstance(body.get("intervention"), dict):
        value = body["intervention"].get("id")
    return str(value) if value is not None else None
