"""Bounded quorum wait over the round message store."""
import asyncio
import logging

from benor.messages import Phase, RoundMessageStore
from benor.state import NodeState

logger = logging.getLogger(__name__)


class BoundedWaiter:
    """Waits until a phase quorum is buffered, a deadline passes, or the node is killed."""
    
    def __init__(self, store: RoundMessageStore, state: NodeState, poll_interval: float):
        self.store = store
        self.state = state
        self.poll_interval = poll_interval
    
    async def wait(self, round_number: int, phase: Phase, min_count: int, max_wait: float) -> bool:
        """
        Return True once `min_count` messages of `phase` are buffered for the round.

        Returns False on timeout or kill. A timeout is a normal outcome and the
        caller proceeds with whatever was collected. The store wakes the waiter
        on every arrival; the poll interval bounds how long a kill can go unseen.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max_wait
        
        while True:
            if self.state.killed:
                return False
            if self.store.count(round_number, phase) >= min_count:
                return True
            
            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.debug(
                    f"Timed out waiting for {min_count} {phase.value} messages in round {round_number}, "
                    f"have {self.store.count(round_number, phase)}"
                )
                return False
            
            await self.store.wait_for_change(min(remaining, self.poll_interval))
