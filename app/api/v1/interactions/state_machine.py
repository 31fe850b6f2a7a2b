"""
Interaction request state machine
Valid transitions plus the compare-and-swap that applies them
"""

from typing import Any, Dict, Optional, Set
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import update
import uuid
import logging

from app.models import InteractionRequest, InteractionStatus

logger = logging.getLogger(__name__)

class InteractionStateMachine:
    """
    Manages valid interaction status transitions
    """

    TRANSITIONS: Dict[InteractionStatus, Set[InteractionStatus]] = {
        InteractionStatus.PENDING: {
            InteractionStatus.ACCEPTED,
            InteractionStatus.REJECTED,
            InteractionStatus.EXPIRED,
            # push payment confirmed for a client who is not verified yet
            InteractionStatus.PENDING_VERIFICATION
        },
        InteractionStatus.PENDING_VERIFICATION: {
            InteractionStatus.PENDING,
            InteractionStatus.REJECTED
        },
        InteractionStatus.ACCEPTED: set(),
        InteractionStatus.REJECTED: set(),
        InteractionStatus.EXPIRED: set()
    }

    @classmethod
    def can_transition(
        cls,
        current_status: InteractionStatus,
        new_status: InteractionStatus
    ) -> bool:
        """
        Check if transition is valid

        Args:
            current_status: Current interaction status
            new_status: Desired new status

        Returns:
            True if transition is allowed
        """
        return new_status in cls.TRANSITIONS.get(current_status, set())

    @classmethod
    def is_terminal_state(cls, status: InteractionStatus) -> bool:
        """
        Check if status is a terminal state

        Args:
            status: Interaction status

        Returns:
            True if no more transitions possible
        """
        return len(cls.TRANSITIONS.get(status, set())) == 0

    @classmethod
    async def transition(
        cls,
        db: AsyncSession,
        interaction_id: uuid.UUID,
        from_status: InteractionStatus,
        to_status: InteractionStatus,
        extra_conditions: Optional[list] = None,
        **values: Any
    ) -> bool:
        """
        Apply a transition as a single conditional UPDATE

        The row moves only while it still holds ``from_status`` (and any
        extra conditions hold), so of two concurrent callers exactly one
        wins.

        Args:
            db: Database session
            interaction_id: Interaction to move
            from_status: Status the row must currently hold
            to_status: Target status
            extra_conditions: Additional WHERE clauses
            **values: Other columns to set alongside the status

        Returns:
            True if this call moved the row

        Raises:
            ValueError: If the transition is not in the transition table
        """
        if not cls.can_transition(from_status, to_status):
            raise ValueError(f"Invalid interaction transition {from_status.value} -> {to_status.value}")

        conditions = [
            InteractionRequest.id == interaction_id,
            InteractionRequest.status == from_status
        ]
        conditions.extend(extra_conditions or [])

        result = await db.execute(
            update(InteractionRequest)
            .where(*conditions)
            .values(status=to_status, **values)
            .execution_options(synchronize_session=False)
        )

        moved = result.rowcount == 1
        if not moved:
            logger.info(
                f"Interaction {interaction_id} {from_status.value} -> {to_status.value} lost (row changed)"
            )
        return moved
