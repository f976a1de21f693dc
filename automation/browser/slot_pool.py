"""Fixed-size pool of exclusive browser slots, one virtual display per slot."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from infrastructure.constants import SlotPoolConfig


@dataclass
class ResourceSlot:
    """One execution lane. ``in_use`` is only flipped by :class:`SlotPool`."""

    slot_id: str
    display: str
    in_use: bool = False


class SlotPool:
    """Hands out slots so that no two account tasks ever share a display.

    The "find a free slot and mark it" step runs under an ``asyncio.Lock`` so
    concurrent acquirers can never receive the same slot.
    """

    def __init__(
        self,
        size: int = SlotPoolConfig.DEFAULT_SIZE,
        *,
        base_display: int = SlotPoolConfig.BASE_DISPLAY,
        backoff_base: float = SlotPoolConfig.BACKOFF_BASE,
        backoff_cap: float = SlotPoolConfig.BACKOFF_CAP,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if size < 1:
            raise ValueError("Slot pool size must be at least 1")
        self.logger = logger or logging.getLogger('SlotPool')
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self._lock = asyncio.Lock()
        self._slots: Dict[str, ResourceSlot] = {}
        for index in range(size):
            slot_id = f"slot-{index + 1}"
            self._slots[slot_id] = ResourceSlot(slot_id=slot_id, display=f":{base_display + index}")
        self._peak_in_use = 0
        self.logger.info("Slot pool ready with %s slots (displays %s)", size, self.displays())

    @property
    def size(self) -> int:
        return len(self._slots)

    @property
    def in_use_count(self) -> int:
        return sum(1 for slot in self._slots.values() if slot.in_use)

    @property
    def peak_in_use(self) -> int:
        return self._peak_in_use

    def displays(self) -> List[str]:
        return [slot.display for slot in self._slots.values()]

    def get(self, slot_id: str) -> Optional[ResourceSlot]:
        return self._slots.get(slot_id)

    def snapshot(self) -> Dict[str, bool]:
        return {slot_id: slot.in_use for slot_id, slot in self._slots.items()}

    def backoff_delay(self, attempt: int) -> float:
        return min(self.backoff_base * (2 ** attempt), self.backoff_cap)

    async def acquire(self) -> Optional[str]:
        """Claim a free slot in one attempt; ``None`` when the pool is exhausted."""

        async with self._lock:
            for slot in self._slots.values():
                if not slot.in_use:
                    slot.in_use = True
                    in_use = self.in_use_count
                    self._peak_in_use = max(self._peak_in_use, in_use)
                    self.logger.debug(
                        "Acquired %s (%s) - %s/%s in use", slot.slot_id, slot.display, in_use, self.size
                    )
                    return slot.slot_id
        return None

    async def acquire_with_retry(
        self, max_retries: int = SlotPoolConfig.ACQUIRE_MAX_RETRIES
    ) -> Optional[str]:
        """Retry :meth:`acquire` with capped exponential backoff between attempts."""

        for attempt in range(max_retries):
            slot_id = await self.acquire()
            if slot_id is not None:
                return slot_id
            if attempt < max_retries - 1:
                delay = self.backoff_delay(attempt)
                self.logger.info(
                    "No free slot (attempt %s/%s), retrying in %ss", attempt + 1, max_retries, delay
                )
                await asyncio.sleep(delay)

        self.logger.warning("No slot became free after %s attempts", max_retries)
        return None

    def release(self, slot_id: Optional[str]) -> None:
        """Mark ``slot_id`` free. Unknown or already-free slots are ignored."""

        if slot_id is None:
            return
        slot = self._slots.get(slot_id)
        if slot is None:
            self.logger.warning("Release requested for unknown slot %s", slot_id)
            return
        if not slot.in_use:
            return
        slot.in_use = False
        self.logger.debug("Released %s - %s/%s in use", slot_id, self.in_use_count, self.size)
