from .base import NO_PAGINATION, DataProvider, Filter, Pagination
from .rest import RestDataProvider
from .sql import SqlDataProvider

__all__ = [
    "DataProvider",
    "Filter",
    "NO_PAGINATION",
    "Pagination",
    "RestDataProvider",
    "SqlDataProvider",
]
