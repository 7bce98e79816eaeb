"""
Ownership record model for sprintlock.

This module provides the OwnershipRecord model: who holds a path, either one
exclusive owner or a set of shared readers.
"""

from typing import Optional

from pydantic import BaseModel, field_validator, model_validator


class OwnershipRecord(BaseModel):
    """Holder of a single path."""

    path: str
    exclusive_owner: Optional[str] = None
    shared_readers: list[str] = []

    @field_validator("shared_readers")
    @classmethod
    def sort_readers(cls, v: list[str]) -> list[str]:
        return sorted(set(v))

    @model_validator(mode="after")
    def check_mode(self):
        if self.exclusive_owner and self.shared_readers:
            raise ValueError(f"Path {self.path} cannot be both exclusively owned and shared")
        if not self.exclusive_owner and not self.shared_readers:
            raise ValueError(f"Path {self.path} has no holder")
        return self

    @property
    def mode(self) -> str:
        return "exclusive" if self.exclusive_owner else "shared"

    @property
    def holders(self) -> list[str]:
        if self.exclusive_owner:
            return [self.exclusive_owner]
        return list(self.shared_readers)
