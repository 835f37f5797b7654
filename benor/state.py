"""State management for Ben-Or nodes."""
import dataclasses
import enum
from typing import Any, Dict, Optional


class DriverStatus(enum.Enum):
    """Lifecycle of a node's round driver."""
    IDLE = "idle"
    RUNNING = "running"
    DECIDED = "decided"
    KILLED = "killed"


@dataclasses.dataclass
class NodeState:
    """
    Protocol state of one node, mutated only by that node's round driver.

    A faulty node keeps value, decided and round at None for its whole
    lifetime; None is never a protocol value.
    """
    killed: bool = False
    value: Optional[int] = None
    decided: Optional[bool] = None
    round: Optional[int] = None
    
    @classmethod
    def initial(cls, initial_value: int, is_faulty: bool) -> 'NodeState':
        if is_faulty:
            return cls()
        return cls(value=initial_value, decided=False, round=1)
    
    def decide(self, value: int) -> None:
        """Adopt a value and mark the node decided. Never reverts."""
        self.value = value
        self.decided = True
    
    def snapshot(self) -> 'NodeState':
        """Copy that later mutations of this state do not affect."""
        return dataclasses.replace(self)
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert state to a dictionary for API responses."""
        return {
            "killed": self.killed,
            "x": self.value,
            "decided": self.decided,
            "k": self.round,
        }
