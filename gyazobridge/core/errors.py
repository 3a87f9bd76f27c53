"""Exception hierarchy shared by the sync engine and its adapters."""


class GyazoBridgeError(Exception):
    """Base class for all gyazobridge errors."""


class ConfigurationError(GyazoBridgeError):
    """Required configuration (e.g. the access token) is missing or invalid."""


class TransportError(GyazoBridgeError):
    """An HTTP call to Gyazo failed, timed out, or returned a non-200 status."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(TransportError):
    """Gyazo has no image with the requested id.

    Deleted-image detection relies on this to confirm an upstream deletion.
    """

    def __init__(self, image_id: str):
        super().__init__(f"Gyazo image not found: {image_id}", status_code=404)
        self.image_id = image_id


class ContentFormatError(GyazoBridgeError):
    """A note lacks the front-matter or ``gyazo_id`` marker of a managed note."""


class SyncCancelledError(GyazoBridgeError):
    """The engine was shut down while a run was in progress."""
