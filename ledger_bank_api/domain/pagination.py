"""Pagination and sort parameters for list endpoints"""

import math
from dataclasses import dataclass
from typing import Iterable, List

from ledger_bank_api.domain.exceptions import DomainException

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class Pagination:
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE

    def __post_init__(self):
        if self.page < 1:
            raise DomainException("validation_error", "page must be >= 1", {"page": self.page})
        if not 1 <= self.page_size <= MAX_PAGE_SIZE:
            raise DomainException(
                "validation_error",
                f"page_size must be between 1 and {MAX_PAGE_SIZE}",
                {"page_size": self.page_size},
            )

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    def meta(self, total: int) -> dict:
        total_pages = math.ceil(total / self.page_size) if total else 0
        return {
            "page": self.page,
            "page_size": self.page_size,
            "total": total,
            "total_pages": total_pages,
            "has_next": self.page < total_pages,
            "has_prev": self.page > 1,
        }


@dataclass(frozen=True)
class Sort:
    field: str
    direction: str = "desc"


def parse_sort(raw: str | None, allowed: Iterable[str]) -> List[Sort]:
    """
    Parse ``field:asc,other:desc`` into sort clauses.

    Fields outside ``allowed`` and unknown directions are validation errors.
    A field without a direction sorts ascending.
    """
    if not raw:
        return []
    allowed = set(allowed)
    clauses = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        name, _, direction = part.partition(":")
        direction = (direction or "asc").lower()
        if name not in allowed:
            raise DomainException(
                "validation_error",
                f"Cannot sort by {name}",
                {"sort": name, "allowed": sorted(allowed)},
            )
        if direction not in ("asc", "desc"):
            raise DomainException("validation_error", f"Invalid sort direction: {direction}")
        clauses.append(Sort(name, direction))
    return clauses
