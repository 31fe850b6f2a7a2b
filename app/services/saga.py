"""
Saga coordinator
Runs committed steps and unwinds them with compensating actions on failure
"""

from typing import Any, Awaitable, Callable, List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
import logging

logger = logging.getLogger(__name__)

Action = Callable[[], Awaitable[Any]]
Compensation = Callable[[Any], Awaitable[Any]]

class Saga:
    """
    Multi-step settlement with explicit compensations

    Usage::

        async with Saga(db, "wallet_only") as saga:
            tx = await saga.step(debit, refund)
            payment = await saga.step(create_payment, fail_payment)

    Each step's action runs and is committed before the next one starts.
    Its compensation is called with the action's result. If anything inside
    the block raises, the session is rolled back, the compensations of the
    completed steps run newest first (each committed on its own) and the
    original exception propagates.
    """

    def __init__(self, db: AsyncSession, name: str):
        self.db = db
        self.name = name
        self._completed: List[Tuple[Compensation, Any]] = []

    async def __aenter__(self) -> "Saga":
        return self

    async def step(
        self,
        action: Action,
        compensation: Optional[Compensation] = None
    ) -> Any:
        """
        Run one step

        Args:
            action: Coroutine function performing the step
            compensation: Coroutine function undoing it, given the step result

        Returns:
            The action's result
        """
        result = await action()
        await self.db.commit()

        if compensation is not None:
            self._completed.append((compensation, result))

        return result

    async def compensate(self) -> None:
        """Undo completed steps in reverse order"""
        while self._completed:
            compensation, result = self._completed.pop()
            try:
                await compensation(result)
                await self.db.commit()
            except Exception:
                logger.exception(f"Saga {self.name}: compensation {getattr(compensation, '__name__', compensation)} failed")
                await self.db.rollback()

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None:
            self._completed.clear()
            return False

        logger.warning(f"Saga {self.name} failed with {exc_type.__name__}: {exc}; compensating")
        await self.db.rollback()
        await self.compensate()
        return False
