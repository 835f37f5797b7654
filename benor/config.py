"""Configuration management for Ben-Or nodes."""
import dataclasses
from typing import List, Optional

from benor.majority import TieBreaker


@dataclasses.dataclass
class BenOrConfig:
    """Configuration for a Ben-Or node."""
    
    # Node identification
    node_id: int
    cluster_nodes: List[str]
    
    # Protocol parameters
    faults: int
    initial_value: int = 0
    is_faulty: bool = False
    
    # Network settings
    host: str = "localhost"
    port: int = 3000
    
    # Timing settings (in milliseconds)
    max_wait: int = 20
    poll_interval: int = 5
    round_delay: int = 5
    send_timeout: int = 1000
    
    # Tie-break policy, fixed for the lifetime of the node
    tie_breaker: TieBreaker = TieBreaker.DETERMINISTIC
    seed: Optional[int] = None
    
    # Round at which an undecided node is forced to decide (None disables)
    forced_decision_round: Optional[int] = 10
    
    # API settings
    api_port: Optional[int] = None
    
    @property
    def n(self) -> int:
        """Number of participants in the cluster."""
        return len(self.cluster_nodes)
    
    @property
    def tolerance_threshold(self) -> int:
        """Largest fault count under which agreement and validity hold."""
        return (self.n - 1) // 2
    
    @property
    def within_tolerance(self) -> bool:
        return self.faults <= self.tolerance_threshold
    
    @property
    def quorum(self) -> int:
        """Number of messages a phase waits for before proceeding."""
        return self.n - self.faults
    
    @property
    def majority_threshold(self) -> int:
        """Strict majority of N."""
        return self.n // 2 + 1
    
    @property
    def max_wait_seconds(self) -> float:
        return self.max_wait / 1000
    
    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval / 1000
    
    @property
    def round_delay_seconds(self) -> float:
        return self.round_delay / 1000
    
    @property
    def send_timeout_seconds(self) -> float:
        return self.send_timeout / 1000
    