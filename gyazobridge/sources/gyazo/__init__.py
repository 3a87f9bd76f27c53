"""Gyazo API adapter."""

from .client import PAGE_SIZE, GyazoClient
from .models import ImageMetadata, ImageOcr, ImageRecord

__all__ = [
    "PAGE_SIZE",
    "GyazoClient",
    "ImageMetadata",
    "ImageOcr",
    "ImageRecord",
]
