"""Test fixtures for Ben-Or consensus tests."""
import asyncio
import pytest
from typing import Callable, Dict, List, Optional

from benor.config import BenOrConfig
from benor.messages import Message
from benor.node import BenOrNode

BASE_PORT = 50000


class InMemoryRPC:
    """Stand-in for BenOrRPC that delivers through an InMemoryNetwork."""
    
    def __init__(self, network: "InMemoryNetwork", node_id: int):
        self.network = network
        self.node_id = node_id
        self.message_handler = None
        self.sent: List[Message] = []
        self.started = False
    
    async def start(self) -> None:
        self.started = True
    
    async def stop(self) -> None:
        self.started = False
    
    def register_message_handler(self, handler) -> None:
        self.message_handler = handler
    
    async def broadcast(self, message: Message) -> None:
        self.sent.append(message)
        await self.network.deliver(message)


class InMemoryNetwork:
    """Synchronous delivery of every broadcast to every connected node."""
    
    def __init__(self):
        self.rpcs: Dict[int, InMemoryRPC] = {}
        # (receiver_id, message) -> True to drop the delivery
        self.drop: Optional[Callable[[int, Message], bool]] = None
    
    def connect(self, node_id: int) -> InMemoryRPC:
        rpc = InMemoryRPC(self, node_id)
        self.rpcs[node_id] = rpc
        return rpc
    
    async def deliver(self, message: Message) -> None:
        for receiver_id, rpc in list(self.rpcs.items()):
            if self.drop and self.drop(receiver_id, message):
                continue
            if rpc.message_handler:
                await rpc.message_handler(message)
    
    def sent_by(self, node_id: int) -> List[Message]:
        return list(self.rpcs[node_id].sent)


def make_config(node_id: int, n: int, faults: int, initial_value: int = 0, **overrides) -> BenOrConfig:
    """Build a config for node `node_id` of an `n`-node local cluster."""
    settings = dict(
        node_id=node_id,
        cluster_nodes=[f"localhost:{BASE_PORT + j}" for j in range(n)],
        faults=faults,
        initial_value=initial_value,
        host="localhost",
        port=BASE_PORT + node_id,
        max_wait=200,
    )
    settings.update(overrides)
    return BenOrConfig(**settings)


@pytest.fixture
async def make_cluster():
    """Factory for clusters of nodes wired to an in-memory network."""
    created: List[BenOrNode] = []
    
    def factory(initial_values: List[int], faults: int,
                faulty: Optional[List[bool]] = None, **overrides):
        n = len(initial_values)
        faulty = faulty or [False] * n
        network = InMemoryNetwork()
        nodes = []
        
        for i, value in enumerate(initial_values):
            config = make_config(i, n, faults, value, is_faulty=faulty[i], **overrides)
            nodes.append(BenOrNode(config, rpc=network.connect(i)))
        
        created.extend(nodes)
        return nodes, network
    
    yield factory
    
    # Shutdown nodes
    for node in created:
        await node.stop()
        if node.consensus_task:
            node.consensus_task.cancel()
            await asyncio.gather(node.consensus_task, return_exceptions=True)


@pytest.fixture
def wait_until():
    """Poll a predicate until it holds or a timeout elapses."""
    
    async def wait(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.01) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        
        while loop.time() < deadline:
            if predicate():
                return True
            await asyncio.sleep(interval)
        
        return predicate()
    
    return wait


@pytest.fixture
def config_factory():
    """Expose make_config to tests."""
    return make_config
