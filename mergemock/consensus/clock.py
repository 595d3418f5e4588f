"""Slot clock."""

import math
import time
from typing import Callable


class SlotClock:
    """Maps wall-clock time to slots counted from genesis.

    Slot ``k`` covers ``[genesis + k * duration, genesis + (k + 1) * duration)``;
    times before genesis give negative slots.
    """

    def __init__(self, genesis_time: float, slot_duration: float,
                 time_fn: Callable[[], float] = time.time):
        if slot_duration <= 0:
            raise ValueError(f"slot duration must be positive, got {slot_duration}")
        self.genesis_time = genesis_time
        self.slot_duration = slot_duration
        self._time_fn = time_fn

    def now(self) -> float:
        return self._time_fn()

    def slot_at(self, t: float) -> int:
        # Rounded first so that exact boundaries survive float division.
        return math.floor(round((t - self.genesis_time) / self.slot_duration, 9))

    def current_slot(self) -> int:
        return self.slot_at(self.now())

    def slot_start(self, slot: int) -> float:
        return self.genesis_time + slot * self.slot_duration

    def seconds_until_next_slot(self) -> float:
        now = self.now()
        return max(self.slot_start(self.slot_at(now) + 1) - now, 0.0)

    def slot_timestamp(self, slot: int) -> int:
        """Execution timestamp of a slot, in whole seconds."""
        return int(self.genesis_time) + int(slot * self.slot_duration)
