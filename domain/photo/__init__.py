"""Photo storage domain exports."""
from .entity import AssetVariant, PhotoStorageRecord

__all__ = ["AssetVariant", "PhotoStorageRecord"]
