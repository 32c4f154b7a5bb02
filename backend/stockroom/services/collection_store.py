# Overview: Collection Store capability on SQLAlchemy; keyed get/put/delete/scan and atomic transactions.

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..errors import ConflictError, StoreUnavailableError, TransactionAbortError, ValidationError
from ..extensions import db
from ..models import COLLECTIONS


@dataclass(frozen=True)
class KeyRange:
    """Bounded range over an index (or the primary key when no index is given)."""
    lower: Any = None
    upper: Any = None
    lower_open: bool = False
    upper_open: bool = False

    def signature(self) -> str:
        lo = "(" if self.lower_open else "["
        hi = ")" if self.upper_open else "]"
        return f"{lo}{'' if self.lower is None else self.lower},{'' if self.upper is None else self.upper}{hi}"


def model_for(collection: str):
    model = COLLECTIONS.get(collection)
    if model is None:
        raise ValidationError(f"Unknown collection '{collection}'")
    return model


def require_available(ctx) -> None:
    if not ctx.available:
        raise StoreUnavailableError("Collection store is not initialized")


def _primary_column(model):
    return getattr(model, model.KEY_FIELD)


def get(ctx, collection: str, key: Any) -> dict | None:
    require_available(ctx)
    model = model_for(collection)
    row = db.session.get(model, model.coerce_key(key))
    return row.to_record() if row is not None else None


def get_all(ctx, collection: str, index: str | None = None, key_range: KeyRange | None = None) -> list[dict]:
    require_available(ctx)
    model = model_for(collection)
    column = model.index_column(index) if index else _primary_column(model)

    query = db.session.query(model)
    if key_range is not None:
        if key_range.lower is not None:
            query = query.filter(column > key_range.lower if key_range.lower_open else column >= key_range.lower)
        if key_range.upper is not None:
            query = query.filter(column < key_range.upper if key_range.upper_open else column <= key_range.upper)
    if index:
        query = query.filter(column.isnot(None))
    rows = query.order_by(column.asc(), _primary_column(model).asc()).all()
    return [row.to_record() for row in rows]


def count(ctx, collection: str) -> int:
    require_available(ctx)
    model = model_for(collection)
    return db.session.query(model).count()


def existing_keys(ctx, collection: str) -> set:
    require_available(ctx)
    model = model_for(collection)
    return {value for (value,) in db.session.query(_primary_column(model)).all()}


def insert(ctx, collection: str, record: dict):
    """Stage an insert; raises ConflictError if the key is already taken."""
    require_available(ctx)
    model = model_for(collection)
    key = model.key_of(record)
    if db.session.get(model, key) is not None:
        raise ConflictError(f"Key '{key}' already exists in {collection}")
    row = model.from_record(record)
    db.session.add(row)
    return key


def put(ctx, collection: str, record: dict):
    """Stage an upsert."""
    require_available(ctx)
    model = model_for(collection)
    key = model.key_of(record)
    row = db.session.get(model, key)
    if row is None:
        db.session.add(model.from_record(record))
    else:
        row.apply_record(record)
    return key


def remove(ctx, collection: str, key: Any) -> bool:
    require_available(ctx)
    model = model_for(collection)
    row = db.session.get(model, model.coerce_key(key))
    if row is None:
        return False
    db.session.delete(row)
    return True


def remove_many(ctx, collection: str, keys) -> int:
    require_available(ctx)
    model = model_for(collection)
    coerced = [model.coerce_key(k) for k in keys]
    if not coerced:
        return 0
    return (
        db.session.query(model)
        .filter(_primary_column(model).in_(coerced))
        .delete(synchronize_session="fetch")
    )


def clear(ctx, collection: str) -> int:
    require_available(ctx)
    model = model_for(collection)
    return db.session.query(model).delete(synchronize_session="fetch")


@contextmanager
def transaction(ctx):
    """
    One atomic unit of work across any number of collections.

    Commits on exit. Domain errors raised inside (conflicts, validation)
    roll back and propagate unchanged; engine failures roll back and surface
    as TransactionAbortError.
    """
    require_available(ctx)
    try:
        yield db.session
        db.session.commit()
    except (ConflictError, ValidationError):
        db.session.rollback()
        raise
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError(str(exc.orig)) from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise TransactionAbortError(str(exc)) from exc
    except Exception:
        db.session.rollback()
        raise
