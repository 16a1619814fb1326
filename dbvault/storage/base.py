"""Object storage interface for backup artifacts."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass
class StoredObject:
    key: str
    size: int = 0
    uploaded: Optional[datetime] = None
    metadata: dict[str, str] = field(default_factory=dict)
    content_type: Optional[str] = None
    body: Optional[bytes] = None


class ObjectStore(ABC):
    """Key/blob store with custom string metadata and prefix listing."""

    name: str = "abstract"

    @abstractmethod
    async def put(
        self,
        key: str,
        content: bytes,
        metadata: dict[str, str],
        content_type: Optional[str] = None,
    ) -> StoredObject:
        ...

    @abstractmethod
    async def get(self, key: str) -> Optional[StoredObject]:
        """Return the object with its body, or None if absent."""

    @abstractmethod
    async def head(self, key: str) -> Optional[StoredObject]:
        """Return the object's metadata without the body, or None if absent."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def list(self, prefix: str) -> list[StoredObject]:
        ...

    async def available(self) -> bool:
        return True
