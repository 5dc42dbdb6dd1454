import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import Date, DateTime
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..database import SessionLocal
from ..errors import DataProviderError, ErrorKind, VersionConflictError, translate_database_error
from ..models import MODELS, READ_ONLY_RESOURCES
from .base import DataProvider, Filter, Pagination

logger = logging.getLogger(__name__)

SERVER_MANAGED_FIELDS = ("created_at", "updated_at")


def row_to_dict(row) -> Dict[str, Any]:
    """Row as the data service would return it: dates as ISO strings."""
    out = {}
    for column in row.__table__.columns:
        value = getattr(row, column.name)
        if isinstance(value, (date, datetime)):
            value = value.isoformat()
        out[column.name] = value
    return out


class SqlDataProvider(DataProvider):
    """DataProvider over the local SQL database (development and tests)."""

    def __init__(self, session_factory: sessionmaker = None):
        self.session_factory = session_factory or SessionLocal

    # --- Helpers ---

    def _model(self, resource: str, write: bool = False):
        model = MODELS.get(resource)
        if model is None:
            raise DataProviderError(ErrorKind.VALIDATION, f"Unknown resource: {resource}", 404, resource)
        if write and resource in READ_ONLY_RESOURCES:
            raise DataProviderError(ErrorKind.VALIDATION, f"{resource} is read-only", 400, resource)
        return model

    def _columns(self, model, values: Dict[str, Any]) -> Dict[str, Any]:
        """Keep known columns only and convert ISO strings for date columns."""
        columns = model.__table__.columns
        out = {}
        for key, value in values.items():
            if key not in columns or key in SERVER_MANAGED_FIELDS:
                continue
            if value == "":
                value = None
            column_type = columns[key].type
            if isinstance(value, str) and isinstance(column_type, DateTime):
                value = datetime.fromisoformat(value)
            elif isinstance(value, str) and isinstance(column_type, Date):
                value = date.fromisoformat(value[:10])
            out[key] = value
        return out

    def _fail(self, db: Session, error: SQLAlchemyError, resource: str) -> DataProviderError:
        db.rollback()
        if isinstance(error, IntegrityError):
            return DataProviderError(ErrorKind.VALIDATION, translate_database_error(str(error.orig)),
                                     400, resource)
        if isinstance(error, OperationalError):
            return DataProviderError(ErrorKind.NETWORK, str(error.orig), 503, resource)
        return DataProviderError(ErrorKind.UNKNOWN, str(error), 500, resource)

    # --- DataProvider ---

    def create(self, resource: str, values: Dict[str, Any]) -> Dict[str, Any]:
        model = self._model(resource, write=True)
        id_col = self.id_column(resource)
        data = {k: v for k, v in self._columns(model, values).items() if k != id_col and v is not None}
        db = self.session_factory()
        try:
            row = model(**data)
            db.add(row)
            db.commit()
            db.refresh(row)
            return row_to_dict(row)
        except SQLAlchemyError as e:
            raise self._fail(db, e, resource) from e
        finally:
            db.close()

    def update(self, resource: str, id: int, values: Dict[str, Any]) -> Dict[str, Any]:
        model = self._model(resource, write=True)
        id_col = self.id_column(resource)
        pk = getattr(model, id_col)
        data = {k: v for k, v in self._columns(model, values).items() if k != id_col}
        db = self.session_factory()
        try:
            query = db.query(model).filter(pk == id)
            if "version" in data and hasattr(model, "version"):
                # Compare-and-swap on the version the caller last saw.
                expected = data.pop("version")
                data["version"] = model.version + 1
                changed = query.filter(model.version == expected).update(data, synchronize_session=False)
                if not changed and query.first() is not None:
                    db.rollback()
                    raise VersionConflictError(f"{resource} {id} was modified by another session", resource)
            else:
                changed = query.update(data, synchronize_session=False) if data else query.count()
            if not changed:
                db.rollback()
                raise DataProviderError(ErrorKind.VALIDATION, f"{resource} {id} not found", 404, resource)
            db.commit()
            return row_to_dict(db.query(model).filter(pk == id).one())
        except SQLAlchemyError as e:
            raise self._fail(db, e, resource) from e
        finally:
            db.close()

    def delete_one(self, resource: str, id: int) -> None:
        model = self._model(resource, write=True)
        pk = getattr(model, self.id_column(resource))
        db = self.session_factory()
        try:
            deleted = db.query(model).filter(pk == id).delete(synchronize_session=False)
            db.commit()
            if not deleted:
                logger.debug("Delete of missing %s %s ignored", resource, id)
        except SQLAlchemyError as e:
            raise self._fail(db, e, resource) from e
        finally:
            db.close()

    def get_list(self, resource: str, filters: Optional[Sequence[Filter]] = None,
                 pagination: Optional[Pagination] = None) -> List[Dict[str, Any]]:
        model = self._model(resource)
        pagination = pagination or Pagination()
        db = self.session_factory()
        try:
            query = db.query(model)
            for f in filters or ():
                query = query.filter(self._condition(model, f))
            query = query.order_by(getattr(model, self.id_column(resource)))
            if pagination.limit is not None:
                query = query.limit(pagination.limit).offset(pagination.offset)
            return [row_to_dict(row) for row in query.all()]
        except SQLAlchemyError as e:
            raise self._fail(db, e, resource) from e
        finally:
            db.close()

    def _condition(self, model, f: Filter):
        column = getattr(model, f.field, None)
        if column is None:
            raise DataProviderError(ErrorKind.VALIDATION, f"Unknown field: {f.field}", 400,
                                    model.__tablename__)
        if f.operator == "eq":
            return column.is_(None) if f.value is None else column == f.value
        if f.operator == "ne":
            return column.isnot(None) if f.value is None else column != f.value
        if f.operator == "lt":
            return column < f.value
        if f.operator == "lte":
            return column <= f.value
        if f.operator == "gt":
            return column > f.value
        if f.operator == "gte":
            return column >= f.value
        if f.operator == "in":
            return column.in_(list(f.value))
        return column.ilike(f"%{f.value}%")
