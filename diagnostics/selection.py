"""Category/check cursor shared by single-node sessions and group views."""

from __future__ import annotations

from diagnostics.context import CATEGORY_COUNT


class Selection:
    """Selected category (wraps around) and check index (clamps, never wraps)."""

    def __init__(self, category: int = 0, check: int = 0):
        self.category = category % CATEGORY_COUNT
        self.check = max(0, check)

    def move_category(self, delta: int) -> None:
        self.category = (self.category + delta) % CATEGORY_COUNT
        self.check = 0

    def move_check(self, delta: int, count: int) -> None:
        if count <= 0:
            self.check = 0
            return
        self.check = min(max(self.check + delta, 0), count - 1)

    def clamp(self, count: int) -> None:
        """Pull the check index back inside a list that may have shrunk."""
        if count <= 0:
            self.check = 0
        elif self.check >= count:
            self.check = count - 1

    def reset_check(self) -> None:
        self.check = 0
