"""
Field update sets for partial updates.

A field the caller did not send is ``UNCHANGED``; a field sent with any value,
``null`` included, is ``SetTo(value)``.
"""
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from pydantic import BaseModel


class _Unchanged:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "UNCHANGED"

    def __bool__(self):
        return False


UNCHANGED = _Unchanged()


@dataclass(frozen=True)
class SetTo:
    value: Any


class UpdateSet:
    def __init__(self, fields: Optional[Dict[str, SetTo]] = None):
        self._fields: Dict[str, SetTo] = dict(fields or {})

    @classmethod
    def from_model(cls, model: BaseModel) -> "UpdateSet":
        data = model.model_dump(include=model.model_fields_set)
        return cls({name: SetTo(value) for name, value in data.items()})

    @classmethod
    def of(cls, **values) -> "UpdateSet":
        return cls({name: SetTo(value) for name, value in values.items()})

    def get(self, name: str):
        return self._fields.get(name, UNCHANGED)

    def is_set(self, name: str) -> bool:
        return name in self._fields

    def value_or(self, name: str, current):
        entry = self._fields.get(name)
        return current if entry is None else entry.value

    def any_set(self, names: Iterable[str]) -> bool:
        return any(name in self._fields for name in names)

    def apply_to(self, obj, names: Iterable[str]) -> None:
        """Copy the set values of ``names`` onto ``obj``."""
        for name in names:
            entry = self._fields.get(name)
            if entry is not None:
                setattr(obj, name, entry.value)

    def __bool__(self):
        return bool(self._fields)

    def __repr__(self):
        return f"UpdateSet({self._fields!r})"
