"""
BatchPlanner - partitions participants into fixed-size batches.

Planning is pure and deterministic: batch ``i`` holds elements
``[i * batch_size, min((i + 1) * batch_size, n))`` of the input order, so
the concatenated batches equal the input exactly and there are
``ceil(n / batch_size)`` of them.
"""

from __future__ import annotations

from collections.abc import Iterable

from ledgershift.config import DEFAULT_BATCH_SIZE
from ledgershift.exceptions import InvalidConfigurationError
from ledgershift.migration.models import Batch


def plan_batches(participants: Iterable[str], batch_size: int) -> list[Batch]:
    """
    Partition participants into batches, preserving order.

    Args:
        participants: Participants in discovery order
        batch_size: Participants per batch, must be positive

    Returns:
        Batches indexed from 0; empty when there are no participants

    Raises:
        InvalidConfigurationError: If batch_size is not positive
    """
    if batch_size <= 0:
        raise InvalidConfigurationError(
            f"batch_size must be positive, got {batch_size}", "batch_size", batch_size
        )
    ordered = tuple(participants)
    return [
        Batch(index=index, participants=ordered[start : start + batch_size])
        for index, start in enumerate(range(0, len(ordered), batch_size))
    ]


class BatchPlanner:
    """
    Holds a batch size and plans batches with it.

    Example:
        >>> planner = BatchPlanner(batch_size=50)
        >>> [len(b) for b in planner.plan(participants)]  # 120 participants
        [50, 50, 20]
    """

    def __init__(self, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        if batch_size <= 0:
            raise InvalidConfigurationError(
                f"batch_size must be positive, got {batch_size}", "batch_size", batch_size
            )
        self._batch_size = batch_size

    @property
    def batch_size(self) -> int:
        return self._batch_size

    def plan(self, participants: Iterable[str]) -> list[Batch]:
        return plan_batches(participants, self._batch_size)


__all__ = ["BatchPlanner", "plan_batches"]
