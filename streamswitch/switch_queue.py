"""
Pending switch targets.

SwitchQueue keeps at most one entry per target identifier. Re-submitting a
queued target moves it to the tail; re-submitting the tail is a no-op.
The queue does no locking of its own; SwitchController guards it.
"""

from typing import List, Optional, Tuple


class SwitchQueue:
    """Ordered, deduplicated sequence of pending target identifiers."""

    def __init__(self) -> None:
        self._items: List[str] = []

    def enqueue(self, target: str) -> bool:
        """
        Add a target to the tail of the queue.

        Args:
            target: Clip identifier

        Returns:
            True if the queue changed, False if the target was already the tail
        """
        if self._items and self._items[-1] == target:
            return False
        if target in self._items:
            self._items.remove(target)
        self._items.append(target)
        return True

    def dequeue(self) -> Optional[str]:
        """Remove and return the head, or None when empty."""
        if not self._items:
            return None
        return self._items.pop(0)

    def peek(self) -> Optional[str]:
        return self._items[0] if self._items else None

    def clear(self) -> None:
        self._items.clear()

    def snapshot(self) -> Tuple[str, ...]:
        return tuple(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, target: object) -> bool:
        return target in self._items

    def __repr__(self) -> str:
        return f"SwitchQueue({self._items!r})"
