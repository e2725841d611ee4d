"""
dnd-archive - D&D Beyond character import with a reviewed reference library.
"""

from .config import ArchiveConfig, load_config
from .models import TransformedCharacter

try:
    from importlib.metadata import PackageNotFoundError, version as _get_version
    __version__ = _get_version("dnd-archive")
except PackageNotFoundError:
    __version__ = "0.1.0"  # Fallback if metadata unavailable
__all__ = ["ArchiveConfig", "TransformedCharacter", "load_config"]
