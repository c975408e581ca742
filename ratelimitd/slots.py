from __future__ import annotations

import heapq
from typing import Generic, Iterator, List, Optional, Tuple, TypeVar

T = TypeVar("T")


class SlotArena(Generic[T]):
    """Dense id space with reuse of freed ids.

    Freed ids go on a min-heap so ``allocate`` always hands out the smallest
    free id before growing the slot list.
    """

    def __init__(self) -> None:
        self._slots: List[Optional[T]] = []
        self._free: List[int] = []

    def allocate(self, item: T) -> int:
        if self._free:
            idx = heapq.heappop(self._free)
            self._slots[idx] = item
            return idx
        self._slots.append(item)
        return len(self._slots) - 1

    def free(self, idx: int) -> None:
        if idx < 0 or idx >= len(self._slots) or self._slots[idx] is None:
            return
        self._slots[idx] = None
        heapq.heappush(self._free, idx)

    def get(self, idx: int) -> Optional[T]:
        if 0 <= idx < len(self._slots):
            return self._slots[idx]
        return None

    def items(self) -> Iterator[Tuple[int, T]]:
        for idx, item in enumerate(self._slots):
            if item is not None:
                yield idx, item

    @property
    def capacity(self) -> int:
        return len(self._slots)

    def __len__(self) -> int:
        return len(self._slots) - len(self._free)
