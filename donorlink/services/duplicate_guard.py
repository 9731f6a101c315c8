"""
In-process fence against concurrent fulfillment of the same donor.

Only covers a single process. Exclusion across instances comes from the
conditional ledger update in the fulfillment engine.
"""
import logging
import threading
from typing import Set

from ..core.errors import AlreadyProcessing

logger = logging.getLogger(__name__)


class DuplicateGuard:
    """Set of donor ids currently being (or already) processed."""

    def __init__(self):
        self._held: Set[str] = set()
        self._lock = threading.Lock()

    def try_acquire(self, donor_id: str) -> None:
        """
        Mark a donor as in progress.

        Raises:
            AlreadyProcessing: if the donor id is already held
        """
        with self._lock:
            if donor_id in self._held:
                logger.warning(f"Donor {donor_id} is already being processed")
                raise AlreadyProcessing(f"Donation for {donor_id} is already being processed")
            self._held.add(donor_id)
        logger.debug(f"Locked donor {donor_id}")

    def release(self, donor_id: str) -> None:
        with self._lock:
            self._held.discard(donor_id)
        logger.debug(f"Released donor {donor_id}")

    def is_held(self, donor_id: str) -> bool:
        with self._lock:
            return donor_id in self._held

    def reset(self) -> None:
        with self._lock:
            self._held.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._held)


duplicate_guard = DuplicateGuard()
