from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Generic, Hashable, Iterable, TypeVar

T = TypeVar("T")


@dataclass
class ChildDiff(Generic[T]):
    added: list[T] = field(default_factory=list)
    removed: list[T] = field(default_factory=list)
    changed: list[tuple[T, T]] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.changed)


def diff_children(
    existing: Iterable[T],
    desired: Iterable[T],
    key: Callable[[T], Hashable],
    same: Callable[[T, T], bool],
) -> ChildDiff[T]:
    """Compare persisted child rows with the wanted set.

    ``changed`` holds (old, new) pairs. A desired row is new when its key is None
    or matches no persisted row, so callers must reject foreign keys beforehand.
    Persisted rows whose key is None cannot be matched and are always removed.
    """
    current: dict = {}
    diff: ChildDiff[T] = ChildDiff()
    for row in existing:
        k = key(row)
        if k is None:
            diff.removed.append(row)
        else:
            current[k] = row

    seen = set()
    for row in desired:
        k = key(row)
        old = current.get(k) if k is not None else None
        if old is None:
            diff.added.append(row)
            continue
        seen.add(k)
        if not same(old, row):
            diff.changed.append((old, row))

    diff.removed.extend(row for k, row in current.items() if k not in seen)
    return diff
