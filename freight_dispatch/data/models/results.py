"""
Result shapes returned by the engine.
"""

import math
from enum import Enum
from typing import Generic, Optional, TypeVar

from pydantic import Field

from .base import WireModel
from .dispatch import Dispatch
from .truck import Truck

T = TypeVar("T")


class MatchPass(str, Enum):
    """Which matching tier produced a page."""

    STRICT = "strict"
    RELAXED = "relaxed"
    NONE = "none"


class MatchedTruck(Truck):
    """A truck annotated with its deadhead distances to a load."""

    dho_distance: float = Field(..., alias="dhoDistance", description="Miles to load origin")
    dhd_distance: Optional[float] = Field(None, alias="dhdDistance", description="Miles to load destination")


class MatchedLoad(Dispatch):
    """A dispatch annotated with its deadhead distances to a truck or search point."""

    dho_distance: Optional[float] = Field(None, alias="dhoDistance")
    dhd_distance: Optional[float] = Field(None, alias="dhdDistance")


class Page(WireModel, Generic[T]):
    """One page of a filtered, sorted result set."""

    results: list[T]
    page: int
    limit: int
    total_pages: int = Field(..., alias="totalPages")
    total_count: int = Field(..., alias="totalCount")
    match_pass: Optional[MatchPass] = Field(None, alias="matchPass")

    @classmethod
    def from_slice(
        cls,
        items: list[T],
        page: int,
        limit: int,
        total_count: int,
        match_pass: Optional[MatchPass] = None,
    ) -> "Page[T]":
        """Build a page from already-sliced items and the filtered total."""
        return cls(
            results=items,
            page=page,
            limit=limit,
            total_pages=math.ceil(total_count / limit) if limit else 0,
            total_count=total_count,
            match_pass=match_pass,
        )

    @property
    def meta(self) -> dict:
        """Pagination metadata in the wire envelope format."""
        meta = {
            "page": self.page,
            "limit": self.limit,
            "totalPages": self.total_pages,
            "totalCount": self.total_count,
        }
        if self.match_pass is not None:
            meta["matchPass"] = self.match_pass.value
        return meta


class ReservationResult(WireModel):
    """Outcome of reserving an explicit identifier."""

    ok: bool
    value: int
    suggested: Optional[int] = None
