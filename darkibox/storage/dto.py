# darkibox/storage/dto.py
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FileMetadata(BaseModel):
    """
    A remote file or directory entry as reported by the Darkibox API.
    Instances are frozen; a refresh produces a new record.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str
    size: int = Field(0, ge=0)
    mod_time: Optional[datetime] = None
    mime_type: Optional[str] = None
    is_dir: bool = False

    @field_validator("mod_time", "mime_type", mode="before")
    @classmethod
    def empty_as_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("size", mode="before")
    @classmethod
    def null_size_as_zero(cls, value):
        # Directories are reported with a null size.
        return 0 if value is None else value


class Features(BaseModel):
    """Optional capabilities advertised to the host framework."""

    model_config = ConfigDict(frozen=True)

    can_have_empty_directories: bool = True
    flat_namespace: bool = False


class UploadResult(BaseModel):
    """The answer of the key-addressed upload server for one file."""

    model_config = ConfigDict(extra="ignore")

    file_code: str
    file_status: Optional[str] = None
