"""Typed all-or-nothing write transactions.

A ``Transaction`` is an ordered list of puts and deletes, each with an
optional precondition on the item currently stored under the same key. It
says *what* to write; the registry decides how to apply it.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator, Optional

from sqlalchemy import inspect
from sqlmodel import SQLModel


class ConditionKind(str, Enum):
    NOT_EXISTS = "not_exists"
    EXISTS = "exists"
    MATCHES = "matches"


@dataclass(frozen=True)
class Condition:
    kind: ConditionKind
    expected: tuple[tuple[str, Any], ...] = ()

    @classmethod
    def not_exists(cls) -> "Condition":
        return cls(ConditionKind.NOT_EXISTS)

    @classmethod
    def exists(cls) -> "Condition":
        return cls(ConditionKind.EXISTS)

    @classmethod
    def matches(cls, **expected: Any) -> "Condition":
        """Item exists and every named attribute equals the given value."""
        return cls(ConditionKind.MATCHES, tuple(sorted(expected.items())))

    def holds(self, current: Optional[SQLModel]) -> bool:
        if self.kind is ConditionKind.NOT_EXISTS:
            return current is None
        if current is None:
            return False
        return all(getattr(current, name) == value for name, value in self.expected)


def primary_key(model: type[SQLModel]) -> tuple[str, ...]:
    return tuple(column.name for column in inspect(model).primary_key)


@dataclass(frozen=True)
class Put:
    item: SQLModel
    condition: Optional[Condition] = None

    @property
    def model(self) -> type[SQLModel]:
        return type(self.item)

    @property
    def key(self) -> dict[str, Any]:
        return {name: getattr(self.item, name) for name in primary_key(self.model)}


@dataclass(frozen=True)
class Delete:
    model: type[SQLModel]
    key: dict[str, Any]
    condition: Optional[Condition] = None


Operation = Put | Delete


class Transaction:
    """Ordered write operations, applied atomically and in order."""

    def __init__(self) -> None:
        self._operations: list[Operation] = []

    def put(self, item: SQLModel, condition: Optional[Condition] = None) -> "Transaction":
        self._operations.append(Put(item, condition))
        return self

    def delete(self, model: type[SQLModel], condition: Optional[Condition] = None, **key: Any) -> "Transaction":
        expected = set(primary_key(model))
        if set(key) != expected:
            raise ValueError(f"{model.__name__} key must be {sorted(expected)}, got {sorted(key)}")
        self._operations.append(Delete(model, key, condition))
        return self

    @property
    def operations(self) -> tuple[Operation, ...]:
        return tuple(self._operations)

    def describe(self) -> list[str]:
        """Compact one-line-per-operation summary for logs."""
        lines = []
        for op in self._operations:
            verb = "put" if isinstance(op, Put) else "delete"
            cond = f" if {op.condition.kind.value}" if op.condition else ""
            lines.append(f"{verb} {op.model.__tablename__} {op.key}{cond}")
        return lines

    def __len__(self) -> int:
        return len(self._operations)

    def __iter__(self) -> Iterator[Operation]:
        return iter(self._operations)
