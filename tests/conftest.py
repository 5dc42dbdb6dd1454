# =============================================================================
# TEST CONFIGURATION
# =============================================================================
# Shared fixtures: in-memory data provider, recording cache and notifier,
# SQLite-backed provider.
# =============================================================================

import itertools
import threading
from typing import Any, Dict, List, Optional, Tuple

import pytest
from sqlalchemy.orm import sessionmaker

from order_service.cache import CacheInvalidator
from order_service.database import init_db, make_engine
from order_service.errors import DataProviderError, ErrorKind, VersionConflictError
from order_service.notifications import Notifier
from order_service.providers import DataProvider, SqlDataProvider
from order_service.schemas import ORDERS
from order_service.sequencer import OrderSaveSequencer
from order_service.service import OrderSaveService


# =============================================================================
# FAKES
# =============================================================================

class FakeDataProvider(DataProvider):
    """
    In-memory data service.

    Records every call as (op, resource, id, values) and fails on demand:
    ``fail("order_details", "create", skip=1)`` lets the first create through
    and fails every later one.
    """

    def __init__(self):
        self.tables: Dict[str, Dict[int, Dict[str, Any]]] = {}
        self.calls: List[Tuple[str, str, Optional[int], Optional[Dict[str, Any]]]] = []
        self.failures: Dict[Tuple[str, str], Tuple[Exception, int]] = {}
        self._seen: Dict[Tuple[str, str], int] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    # --- Test helpers ---

    def fail(self, resource: str, op: str, error: Exception = None, skip: int = 0):
        error = error or DataProviderError(ErrorKind.NETWORK, f"{op} {resource} failed", 503, resource)
        self.failures[(resource, op)] = (error, skip)

    def seed(self, resource: str, **values) -> Dict[str, Any]:
        with self._lock:
            row_id = next(self._ids)
            row = {**values, self.id_column(resource): row_id}
            if resource == ORDERS:
                row.setdefault("version", 0)
            self.tables.setdefault(resource, {})[row_id] = row
            return dict(row)

    def rows(self, resource: str) -> List[Dict[str, Any]]:
        return list(self.tables.get(resource, {}).values())

    def calls_for(self, op: str, resource: str = None):
        return [c for c in self.calls if c[0] == op and (resource is None or c[1] == resource)]

    def _check(self, op: str, resource: str):
        key = (resource, op)
        seen = self._seen.get(key, 0)
        self._seen[key] = seen + 1
        if key in self.failures:
            error, skip = self.failures[key]
            if seen >= skip:
                raise error

    # --- DataProvider ---

    def create(self, resource, values):
        with self._lock:
            self.calls.append(("create", resource, None, dict(values)))
            self._check("create", resource)
        return self.seed(resource, **values)

    def update(self, resource, id, values):
        with self._lock:
            self.calls.append(("update", resource, id, dict(values)))
            self._check("update", resource)
            row = self.tables.get(resource, {}).get(id)
            if row is None:
                raise DataProviderError(ErrorKind.VALIDATION, f"{resource} {id} not found", 404, resource)
            values = dict(values)
            if "version" in values and "version" in row:
                if values.pop("version") != row["version"]:
                    raise VersionConflictError(resource=resource)
                values["version"] = row["version"] + 1
            row.update(values)
            return dict(row)

    def delete_one(self, resource, id):
        with self._lock:
            self.calls.append(("delete", resource, id, None))
            self._check("delete", resource)
            self.tables.get(resource, {}).pop(id, None)

    def get_list(self, resource, filters=None, pagination=None):
        with self._lock:
            self.calls.append(("get_list", resource, None, None))
            self._check("get_list", resource)
            rows = [dict(r) for r in self.tables.get(resource, {}).values()]
        for f in filters or ():
            if f.operator == "eq":
                rows = [r for r in rows if r.get(f.field) == f.value]
            elif f.operator == "in":
                rows = [r for r in rows if r.get(f.field) in f.value]
        if pagination is not None and pagination.limit is not None:
            rows = rows[pagination.offset:pagination.offset + pagination.limit]
        return rows


class RecordingCache(CacheInvalidator):
    def __init__(self):
        self.invalidations = []

    def invalidate(self, resource, scope, id=None):
        self.invalidations.append((resource, scope, id))


class RecordingNotifier(Notifier):
    def __init__(self):
        self.events = []

    def success(self, message, description=None):
        self.events.append(("success", message, description))

    def error(self, message, detail, persistent=True):
        self.events.append(("error", message, detail, persistent))

    def reload_prompt(self, title, message):
        self.events.append(("reload", title, message))


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def provider() -> FakeDataProvider:
    return FakeDataProvider()


@pytest.fixture
def cache() -> RecordingCache:
    return RecordingCache()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def sequencer(provider, cache):
    seq = OrderSaveSequencer(provider, cache, max_workers=4)
    yield seq
    seq.close()


@pytest.fixture
def service(sequencer, notifier) -> OrderSaveService:
    return OrderSaveService(sequencer, notifier)


@pytest.fixture
def sql_provider(tmp_path):
    """SqlDataProvider over a throwaway SQLite file."""
    engine = make_engine(f"sqlite:///{tmp_path / 'orders.db'}")
    init_db(engine)
    yield SqlDataProvider(sessionmaker(autocommit=False, autoflush=False, bind=engine))
    engine.dispose()
