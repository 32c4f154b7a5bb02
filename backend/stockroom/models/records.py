from __future__ import annotations

from typing import Any

from ..errors import ValidationError


def to_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    text = str(value).strip()
    if not text:
        return None
    try:
        return int(float(text))
    except ValueError:
        return None


def to_float(value: Any) -> float | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip().replace(",", ".")
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def to_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


class RecordMixin:
    """
    Maps a plain record dict onto a row.

    The full record is kept verbatim in a JSON column; the attributes that
    back secondary indices are projected into typed columns on every write.
    INDEXES maps the public index name to the column attribute.
    """

    KEY_FIELD = "id"
    INDEXES = {}

    @classmethod
    def coerce_key(cls, value: Any) -> Any:
        return str(value)

    @classmethod
    def key_of(cls, record: dict) -> Any:
        if not isinstance(record, dict):
            raise ValidationError("Record must be an object")
        value = record.get(cls.KEY_FIELD)
        if value is None or value == "":
            raise ValidationError(f"Record is missing required field '{cls.KEY_FIELD}'")
        return cls.coerce_key(value)

    @classmethod
    def index_column(cls, index_name: str):
        attr = cls.INDEXES.get(index_name)
        if attr is None:
            raise ValidationError(f"Unknown index '{index_name}' on {cls.__tablename__}")
        return getattr(cls, attr)

    @classmethod
    def from_record(cls, record: dict):
        row = cls()
        row.apply_record(record)
        return row

    def apply_record(self, record: dict) -> None:
        raise NotImplementedError

    def to_record(self) -> dict:
        raise NotImplementedError
