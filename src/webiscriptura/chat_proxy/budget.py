"""Character-budget selection of conversation history."""

from __future__ import annotations

from typing import Sequence

from .config import CHAR_BUDGET
from .models import Message


def select_within_budget(
    messages: Sequence[Message], budget: int = CHAR_BUDGET
) -> list[Message]:
    """Return the leading messages whose combined content fits ``budget``.

    Messages are taken in order and selection stops at the first one that
    would push the running total past the budget. Later messages are dropped
    even when they would fit on their own.
    """

    selected: list[Message] = []
    total = 0
    for message in messages:
        size = len(message.content)
        if total + size > budget:
            break
        total += size
        selected.append(message)
    return selected
