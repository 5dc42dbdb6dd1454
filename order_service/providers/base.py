from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from ..schemas import ID_COLUMNS

OPERATORS = ("eq", "ne", "lt", "lte", "gt", "gte", "in", "contains")


@dataclass(frozen=True)
class Filter:
    field: str
    operator: str
    value: Any

    def __post_init__(self):
        if self.operator not in OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.operator}")


@dataclass(frozen=True)
class Pagination:
    """Page of a list query. ``mode="off"`` returns every row."""
    current: int = 1
    page_size: int = 10
    mode: str = "server"

    @property
    def limit(self) -> Optional[int]:
        return None if self.mode == "off" else self.page_size

    @property
    def offset(self) -> int:
        return 0 if self.mode == "off" else (self.current - 1) * self.page_size


NO_PAGINATION = Pagination(mode="off")


class DataProvider(ABC):
    """
    Generic per-resource access to the data service.

    Implementations must be safe to call from several threads at once and
    raise DataProviderError for every failure.
    """

    def id_column(self, resource: str) -> str:
        return ID_COLUMNS.get(resource, "id")

    @abstractmethod
    def create(self, resource: str, values: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    def update(self, resource: str, id: int, values: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    def delete_one(self, resource: str, id: int) -> None:
        ...

    @abstractmethod
    def get_list(self, resource: str, filters: Optional[Sequence[Filter]] = None,
                 pagination: Optional[Pagination] = None) -> List[Dict[str, Any]]:
        ...

    def get_one(self, resource: str, id: int) -> Optional[Dict[str, Any]]:
        rows = self.get_list(resource, [Filter(self.id_column(resource), "eq", id)], Pagination(page_size=1))
        return rows[0] if rows else None
