# -*- coding: utf-8 -*-
"""Stored entities other than calculation records."""

from __future__ import annotations

from datetime import datetime
from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator

from cityprosperity.determinism import new_record_id


class ComparisonSet(BaseModel):
    """A named list of cities a user compares regularly.

    Attributes:
        id: Opaque identifier.
        user_id: Owner.
        name: Display name chosen by the user.
        cities: ``City:Country`` entries, in the user's order.
        created_at: Creation time.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_record_id)
    user_id: str
    name: str = Field(..., min_length=1)
    cities: List[str] = Field(..., min_length=1)
    created_at: datetime

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must not be blank")
        return value


__all__ = ["ComparisonSet"]
