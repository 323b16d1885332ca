"""Base classes for domain objects.

Everything in the domain is an immutable snapshot. A change produces a new
object; stores decide which snapshot wins.
"""

from abc import ABC
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class ValueObject(ABC):
    """Immutable value compared by its fields (Money, Actor)."""


@dataclass(frozen=True)
class Entity(ABC, Generic[T]):
    """Snapshot of something with a stable identity.

    Two snapshots of the same order share ``id`` but differ in version and
    state, so ``==`` compares whole snapshots and never identity alone.

    Attributes:
        id: Identifier shared by every snapshot of the entity.
    """

    id: T
