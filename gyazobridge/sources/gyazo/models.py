"""Data models for Gyazo images."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any


@dataclass(frozen=True)
class ImageMetadata:
    """Capture metadata attached to an image by the Gyazo client app."""

    app: str | None = None
    title: str | None = None
    url: str | None = None
    desc: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any] | None) -> "ImageMetadata | None":
        if not data:
            return None
        return cls(
            app=data.get("app") or None,
            title=data.get("title") or None,
            url=data.get("url") or None,
            desc=data.get("desc") or None,
        )


@dataclass(frozen=True)
class ImageOcr:
    """OCR result, filled in asynchronously by Gyazo after upload."""

    locale: str | None = None
    description: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any] | None) -> "ImageOcr | None":
        if not data:
            return None
        return cls(
            locale=data.get("locale") or None,
            description=data.get("description") or None,
        )


@dataclass(frozen=True)
class ImageRecord:
    """
    A Gyazo image as returned by the list or detail endpoints.

    Attributes:
        image_id: Stable, unique image id
        created_at: Creation timestamp as sent by the API (ISO-8601)
        permalink_url: Gyazo page for the image
        thumb_url: Thumbnail URL
        url: Direct content URL
        type: File type, e.g. "png"
        metadata: Optional capture metadata (app, title, source url, description)
        ocr: Optional OCR result
    """

    image_id: str
    created_at: str
    permalink_url: str = ""
    thumb_url: str = ""
    url: str = ""
    type: str = ""
    metadata: ImageMetadata | None = None
    ocr: ImageOcr | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "ImageRecord":
        """Build a record from an API payload.

        Raises:
            ValueError: If the payload has no ``image_id``
        """
        image_id = data.get("image_id")
        if not image_id:
            raise ValueError("Gyazo image payload has no image_id")
        return cls(
            image_id=str(image_id),
            created_at=data.get("created_at") or "",
            permalink_url=data.get("permalink_url") or "",
            thumb_url=data.get("thumb_url") or "",
            url=data.get("url") or "",
            type=data.get("type") or "",
            metadata=ImageMetadata.from_api(data.get("metadata")),
            ocr=ImageOcr.from_api(data.get("ocr")),
        )

    @property
    def created_datetime(self) -> datetime:
        """Creation time as an aware UTC datetime."""
        raw = self.created_at.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        parsed = datetime.fromisoformat(raw)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)

    @property
    def title(self) -> str | None:
        return self.metadata.title if self.metadata else None

    @property
    def app(self) -> str | None:
        return self.metadata.app if self.metadata else None

    @property
    def description(self) -> str | None:
        return self.metadata.desc if self.metadata else None

    @property
    def ocr_text(self) -> str | None:
        return self.ocr.description if self.ocr else None
