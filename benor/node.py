"""Ben-Or consensus node implementation."""
import asyncio
import logging
import random
from typing import List, Optional

from benor.config import BenOrConfig
from benor.majority import resolve
from benor.messages import Message, Phase, RoundMessageStore
from benor.rpc import BenOrRPC
from benor.state import DriverStatus, NodeState
from benor.waiter import BoundedWaiter

logger = logging.getLogger(__name__)


class BenOrNode:
    """
    Implementation of one participant in Ben-Or binary consensus.

    Every round has two phases:
    - R: broadcast the current value and look for a strict majority
    - P: broadcast the majority (or the tie-break) and decide on a strict majority

    The round driver is the only writer of the node state. Inbound messages
    only touch the round message store.
    """
    
    def __init__(self, config: BenOrConfig, rpc: Optional[BenOrRPC] = None):
        self.config = config
        self.node_id = config.node_id
        self.is_faulty = config.is_faulty
        
        # Initialize state
        self.state = NodeState.initial(config.initial_value, config.is_faulty)
        self.status = DriverStatus.IDLE
        
        # Message buffering and quorum waits
        self.store = RoundMessageStore(self.state, faulty=config.is_faulty)
        self.waiter = BoundedWaiter(self.store, self.state, config.poll_interval_seconds)
        
        # Tie-break randomness, only used by the random policy
        self.rng = random.Random(config.seed)
        
        # Initialize RPC
        if rpc is None:
            rpc = BenOrRPC(
                self.node_id,
                config.host,
                config.port,
                config.cluster_nodes,
                send_timeout=config.send_timeout_seconds,
            )
        self.rpc = rpc
        self.rpc.register_message_handler(self.handle_message)
        
        self.consensus_task: Optional[asyncio.Task] = None
        
        # Shutdown flag
        self.shutdown_event = asyncio.Event()
    
    async def serve(self, autostart: bool = False) -> None:
        """Run the node's RPC server until shutdown is requested."""
        logger.info(
            f"Starting Ben-Or node {self.node_id} (N={self.config.n}, F={self.config.faults}, "
            f"faulty={self.is_faulty}, tie-breaker={self.config.tie_breaker.value})"
        )
        
        await self.rpc.start()
        
        if autostart:
            self.start()
        
        try:
            await self.shutdown_event.wait()
        except asyncio.CancelledError:
            logger.info(f"Node {self.node_id} task cancelled")
        finally:
            await self.shutdown()
    
    async def shutdown(self) -> None:
        """Kill the node and stop its RPC server."""
        logger.info(f"Stopping Ben-Or node {self.node_id}")
        
        await self.stop()
        
        if self.consensus_task and not self.consensus_task.done():
            self.consensus_task.cancel()
            await asyncio.gather(self.consensus_task, return_exceptions=True)
        
        await self.rpc.stop()
    
    def start(self) -> bool:
        """
        Begin participating in consensus.

        A no-op for faulty, killed, running or already decided nodes.
        Returns whether a round driver was started.
        """
        if self.is_faulty or self.state.killed or self.status is not DriverStatus.IDLE:
            return False
        
        self.status = DriverStatus.RUNNING
        self.consensus_task = asyncio.create_task(self.run_consensus())
        logger.info(f"Node {self.node_id} started consensus with value {self.state.value}")
        return True
    
    async def stop(self) -> None:
        """Kill the node. Idempotent, and allowed from any state."""
        if self.state.killed:
            return
        
        self.state.killed = True
        self.status = DriverStatus.KILLED
        await self.store.interrupt()
        logger.info(f"Node {self.node_id} killed at round {self.state.round}")
    
    def is_live(self) -> bool:
        """Liveness probe: faulty nodes are permanently down."""
        return not self.is_faulty
    
    def get_state(self) -> NodeState:
        """Read-only snapshot of the node state."""
        return self.state.snapshot()
    
    async def handle_message(self, message: Message) -> bool:
        """Handle a delivered message. Returns whether its content was retained."""
        return await self.store.append(message)
    
    async def broadcast(self, phase: Phase, round_number: int, value: int) -> None:
        """Send a phase message to every node unless the node was killed."""
        if self.state.killed:
            return
        
        message = Message(phase=phase, sender_id=self.node_id, round=round_number, value=value)
        await self.rpc.broadcast(message)
    
    async def run_consensus(self) -> None:
        """Round driver: runs rounds until the node decides or is killed."""
        if self.is_faulty or self.state.killed:
            return
        
        quorum = self.config.quorum
        threshold = self.config.majority_threshold
        max_wait = self.config.max_wait_seconds
        
        try:
            while not self.state.decided and not self.state.killed:
                k = self.state.round
                
                # Phase R: broadcast the current value
                await self.broadcast(Phase.R, k, self.state.value)
                await self.waiter.wait(k, Phase.R, quorum, max_wait)
                if self.state.killed:
                    break
                
                majority = resolve(self.store.values(k, Phase.R), threshold)
                if majority is None:
                    proposal = self.config.tie_breaker.choose(k, self.rng)
                    logger.debug(f"Node {self.node_id} round {k}: no R majority, tie-break to {proposal}")
                else:
                    proposal = majority
                
                # Phase P: broadcast the proposal
                await self.broadcast(Phase.P, k, proposal)
                await self.waiter.wait(k, Phase.P, quorum, max_wait)
                if self.state.killed:
                    break
                
                self.apply_decision_rule(k, proposal, self.store.values(k, Phase.P))
                
                # Move to the next round and forget this one
                self.state.round = k + 1
                self.store.evict(k)
                
                await asyncio.sleep(self.config.round_delay_seconds)
        except asyncio.CancelledError:
            logger.info(f"Node {self.node_id} consensus task cancelled")
            raise
        except Exception as e:
            logger.error(f"Node {self.node_id} consensus failed in round {self.state.round}: {e}", exc_info=True)
            raise
        finally:
            if self.status is DriverStatus.RUNNING and self.state.decided:
                self.status = DriverStatus.DECIDED
    
    def apply_decision_rule(self, k: int, proposal: int, p_values: List[int]) -> None:
        """Update value and decided from the phase P values of round k."""
        if not self.config.within_tolerance:
            # Safety cannot be guaranteed: never decide, track a value for observation only
            if p_values:
                self.state.value = p_values[0]
            self.state.decided = False
            return
        
        p_majority = resolve(p_values, self.config.majority_threshold)
        if p_majority is not None:
            self.state.decide(p_majority)
            logger.info(f"Node {self.node_id} decided {p_majority} in round {k}")
            return
        
        self.state.value = proposal
        
        forced_round = self.config.forced_decision_round
        if forced_round is not None and k >= forced_round:
            self.state.decide(proposal)
            logger.warning(f"Node {self.node_id} forced decision {proposal} in round {k} without a P majority")
