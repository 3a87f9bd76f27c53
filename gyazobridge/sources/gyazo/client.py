"""Gyazo REST API client."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from gyazobridge.core.config import DEFAULT_API_BASE_URL
from gyazobridge.core.errors import NotFoundError, TransportError

from .models import ImageRecord

logger = logging.getLogger(__name__)

PAGE_SIZE = 20


class GyazoClient:
    """
    API client for the Gyazo image list, detail and delete endpoints.

    Every call is bounded by ``timeout``; a timeout or network failure is
    reported as :class:`TransportError` and never retried here, so callers
    can treat it as an ordinary failed call.
    """

    def __init__(
        self,
        access_token: str,
        base_url: str = DEFAULT_API_BASE_URL,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the Gyazo client.

        Args:
            access_token: Gyazo API access token
            base_url: API root (e.g., https://api.gyazo.com)
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout, connect=min(timeout, 10.0)),
            transport=transport,
        )

    async def close(self) -> None:
        """Close HTTP client connections."""
        await self._client.aclose()

    async def __aenter__(self) -> "GyazoClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _request(self, method: str, path: str, params: dict[str, Any] | None = None) -> httpx.Response:
        query = {"access_token": self.access_token}
        if params:
            query.update(params)
        try:
            return await self._client.request(method, path, params=query)
        except httpx.TimeoutException as e:
            raise TransportError(f"Gyazo API timed out: {method} {path}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"Gyazo API request failed: {method} {path}: {e}") from e

    async def list_images(self, page: int, per_page: int = PAGE_SIZE) -> list[ImageRecord]:
        """
        Fetch one page of the image list (newest first).

        Entries without an ``image_id`` are logged and dropped.

        Raises:
            TransportError: On network failure or a non-200 response
        """
        response = await self._request("GET", "/api/images", {"page": page, "per_page": per_page})
        if response.status_code != 200:
            logger.error(f"Gyazo list request failed: HTTP {response.status_code}")
            raise TransportError(
                f"Gyazo API error: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        payload = self._json(response)
        if not isinstance(payload, list):
            raise TransportError("Gyazo API returned an unexpected image list payload")

        records = []
        for item in payload:
            try:
                records.append(ImageRecord.from_api(item))
            except (ValueError, AttributeError) as e:
                logger.error(f"Skipping malformed image entry on page {page}: {e}")
        logger.debug(f"Fetched page {page}: {len(payload)} images")
        return records

    async def get_image(self, image_id: str) -> ImageRecord:
        """
        Fetch full details (metadata, OCR) for a single image.

        Raises:
            NotFoundError: If Gyazo has no image with this id
            TransportError: On any other failure
        """
        if not image_id:
            raise ValueError("image_id must not be empty")

        response = await self._request("GET", f"/api/images/{image_id}")
        if response.status_code == 404:
            raise NotFoundError(image_id)
        if response.status_code != 200:
            raise TransportError(
                f"Gyazo image detail failed for {image_id}: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        payload = self._json(response)
        if not isinstance(payload, dict) or not payload.get("image_id"):
            # The API answers unknown ids with an empty body on some paths
            raise NotFoundError(image_id)
        return ImageRecord.from_api(payload)

    async def delete_image(self, image_id: str) -> bool:
        """
        Delete an image on Gyazo.

        Returns:
            True only if the API answered 200 and echoed the same image id
        """
        try:
            response = await self._request("DELETE", f"/api/images/{image_id}")
        except TransportError as e:
            logger.error(f"Gyazo delete failed for {image_id}: {e}")
            return False

        if response.status_code != 200:
            logger.warning(f"Gyazo delete for {image_id} returned HTTP {response.status_code}")
            return False

        try:
            payload = self._json(response)
        except TransportError:
            logger.warning(f"Gyazo delete for {image_id} returned an unreadable body")
            return False

        if isinstance(payload, dict) and payload.get("image_id") == image_id:
            logger.info(f"Deleted Gyazo image {image_id} (type: {payload.get('type')})")
            return True

        logger.warning(f"Unexpected Gyazo delete response for {image_id}: {payload}")
        return False

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise TransportError("Gyazo API returned invalid JSON", status_code=response.status_code) from e
