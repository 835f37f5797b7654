"""Protocol messages and the per-round message buffer."""
import asyncio
import dataclasses
import enum
import logging
from typing import Any, Dict, List

from benor.state import NodeState

logger = logging.getLogger(__name__)


class Phase(enum.Enum):
    """The two sub-rounds of a consensus round."""
    R = "R"
    P = "P"


@dataclasses.dataclass(frozen=True)
class Message:
    """A single phase message sent by one node for one round."""
    phase: Phase
    sender_id: int
    round: int
    value: int
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for transmission."""
        return {
            "type": self.phase.value,
            "nodeId": self.sender_id,
            "k": self.round,
            "value": self.value,
        }
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Message':
        """
        Create a Message from a received dictionary.

        Raises KeyError for missing fields and ValueError for fields that
        are not a valid phase, integer round or binary value.
        """
        phase = Phase(data["type"])
        sender_id = data["nodeId"]
        round_number = data["k"]
        value = data["value"]
        
        for name, field in (("nodeId", sender_id), ("k", round_number), ("value", value)):
            if isinstance(field, bool) or not isinstance(field, int):
                raise ValueError(f"{name} must be an integer, got {field!r}")
        if value not in (0, 1):
            raise ValueError(f"value must be 0 or 1, got {value!r}")
        
        return cls(phase=phase, sender_id=sender_id, round=round_number, value=value)


class RoundMessageStore:
    """
    Append-only buffer of received messages, grouped by round.

    Inbound delivery appends while the round driver reads snapshots; every
    append notifies waiters through a condition variable. A round's bucket
    is dropped once the driver has finished with it, and messages for rounds
    that were already evicted are discarded on arrival.
    """
    
    def __init__(self, state: NodeState, faulty: bool = False):
        self.state = state
        self.faulty = faulty
        self._rounds: Dict[int, List[Message]] = {}
        self._evicted_through = 0
        self._changed = asyncio.Condition()
    
    def accepting(self) -> bool:
        """Whether newly delivered messages are retained."""
        return not (self.faulty or self.state.killed or self.state.decided is True)
    
    async def append(self, message: Message) -> bool:
        """Buffer a delivered message. Returns False if it was discarded."""
        async with self._changed:
            if not self.accepting():
                return False
            if message.round <= self._evicted_through:
                logger.debug(f"Dropping late {message.phase.value} message for evicted round {message.round}")
                return False
            
            self._rounds.setdefault(message.round, []).append(message)
            self._changed.notify_all()
        return True
    
    def read(self, round_number: int, phase: Phase) -> List[Message]:
        """Snapshot of the messages of one phase in one round."""
        return [m for m in self._rounds.get(round_number, ()) if m.phase is phase]
    
    def values(self, round_number: int, phase: Phase) -> List[int]:
        return [m.value for m in self.read(round_number, phase)]
    
    def count(self, round_number: int, phase: Phase) -> int:
        return len(self.read(round_number, phase))
    
    def evict(self, round_number: int) -> None:
        """Drop all messages for a completed round."""
        self._rounds.pop(round_number, None)
        self._evicted_through = max(self._evicted_through, round_number)
    
    async def wait_for_change(self, timeout: float) -> None:
        """Block until a message arrives, interrupt() is called, or timeout elapses."""
        async with self._changed:
            try:
                await asyncio.wait_for(self._changed.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                pass
    
    async def interrupt(self) -> None:
        """Wake every waiter, e.g. after the node was killed."""
        async with self._changed:
            self._changed.notify_all()
    
    @property
    def buffered_rounds(self) -> List[int]:
        return sorted(self._rounds)
