"""gyazobridge - keep a markdown vault in step with a Gyazo image library."""

from gyazobridge.version import get_version

__version__ = get_version()

__all__ = ["__version__"]
