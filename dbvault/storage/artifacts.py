"""Metadata stored alongside every backup artifact."""

from typing import Optional

from pydantic import BaseModel


class BackupArtifactMetadata(BaseModel):
    database_id: str
    database_name: str = ""
    source: str = "manual"
    timestamp: int
    size: int
    bookmark: Optional[str] = None
    user_email: Optional[str] = None
    table_name: Optional[str] = None
    format: Optional[str] = None
    row_count: Optional[int] = None

    def to_storage(self) -> dict[str, str]:
        """Flatten to the string-only map object stores accept."""
        return {k: str(v) for k, v in self.model_dump(exclude_none=True).items()}

    @classmethod
    def from_storage(cls, metadata: dict[str, str]) -> Optional["BackupArtifactMetadata"]:
        try:
            return cls.model_validate(metadata)
        except ValueError:
            return None
