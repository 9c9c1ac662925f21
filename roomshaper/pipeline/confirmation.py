"""
Confirmation Gate — a single-slot holder for an action awaiting a yes/no.
"""

import logging
from typing import Optional

from .errors import ConfirmationPendingError
from .models import PendingAction

logger = logging.getLogger(__name__)


class ConfirmationGate:
    def __init__(self):
        self._pending: Optional[PendingAction] = None

    @property
    def pending(self) -> Optional[PendingAction]:
        return self._pending

    @property
    def is_pending(self) -> bool:
        return self._pending is not None

    def request(self, action: PendingAction):
        """Park `action` until the user answers. Only one may wait at a time."""
        if self._pending is not None:
            raise ConfirmationPendingError(
                f"Cannot request {action.kind.value}: "
                f"{self._pending.kind.value} is still awaiting confirmation."
            )
        self._pending = action
        logger.info(f"Confirmation requested for {action.kind.value}")

    def confirm(self) -> Optional[PendingAction]:
        """Release the pending action to the caller for execution."""
        action, self._pending = self._pending, None
        if action:
            logger.info(f"Confirmation accepted for {action.kind.value}")
        return action

    def cancel(self):
        if self._pending:
            logger.info(f"Confirmation cancelled for {self._pending.kind.value}")
        self._pending = None
