"""
Sync operation state machine.

State Flow:
    pending -> running -> succeeded
       |          |-> failed
       |          |-> cancelled
       |-> cancelled

Terminal states (succeeded, failed, cancelled) are final: an operation ends
in exactly one of them.

Usage:
    sm = OperationStateMachine()

    if sm.can_transition(operation.status, 'running'):
        sm.transition(operation, 'running')
"""

from datetime import datetime, timezone
import logging

logger = logging.getLogger(__name__)


class OperationStateMachine:
    """Enforces valid status transitions for sync operation records."""

    VALID_TRANSITIONS = {
        'pending': ['running', 'cancelled'],
        'running': ['succeeded', 'failed', 'cancelled'],
        'succeeded': [],  # Terminal state
        'failed': [],  # Terminal state
        'cancelled': [],  # Terminal state
    }

    VALID_STATES = set(VALID_TRANSITIONS)

    TERMINAL_STATES = {'succeeded', 'failed', 'cancelled'}

    def can_transition(self, from_state: str, to_state: str) -> bool:
        """
        Check if a status transition is valid.

        Examples:
            >>> sm = OperationStateMachine()
            >>> sm.can_transition('pending', 'running')
            True
            >>> sm.can_transition('pending', 'succeeded')
            False
            >>> sm.can_transition('failed', 'running')
            False  # Terminal state
        """
        if from_state not in self.VALID_STATES:
            logger.warning(f"Invalid from_state: {from_state}")
            return False

        if to_state not in self.VALID_STATES:
            logger.warning(f"Invalid to_state: {to_state}")
            return False

        return to_state in self.VALID_TRANSITIONS.get(from_state, [])

    def is_terminal(self, state: str) -> bool:
        return state in self.TERMINAL_STATES

    def transition(self, operation, to_state: str) -> bool:
        """
        Move an operation record to a new status.

        Args:
            operation: SyncOperationRecord (or any object with status/started_at/completed_at)
            to_state: Target status

        Returns:
            True if the transition was applied, False if it is not allowed

        Side Effects:
            - Updates operation.status
            - Sets started_at when entering 'running'
            - Sets completed_at when entering a terminal state
        """
        from_state = operation.status

        if not self.can_transition(from_state, to_state):
            logger.error(
                f"Invalid state transition for sync operation {operation.id}: "
                f"{from_state} -> {to_state}"
            )
            return False

        operation.status = to_state

        utcnow = datetime.now(timezone.utc)

        if to_state == 'running' and not operation.started_at:
            operation.started_at = utcnow

        if to_state in self.TERMINAL_STATES and not operation.completed_at:
            operation.completed_at = utcnow

        logger.info(f"Sync operation {operation.id} transitioned: {from_state} -> {to_state}")
        return True
