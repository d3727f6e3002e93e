"""Storage data transfer objects."""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class ObjectInfo(BaseModel):
    """Object metadata returned by ``get_info``."""
    key: str
    exists: bool = True
    size: int
    content_type: Optional[str] = None
    etag: Optional[str] = None
    last_modified: Optional[datetime] = None
