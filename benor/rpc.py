"""Node-to-node messaging for Ben-Or consensus."""
import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

import aiohttp
from aiohttp import web
from aiohttp import TCPConnector

from benor.messages import Message

logger = logging.getLogger(__name__)

MessageHandler = Callable[[Message], Awaitable[bool]]


class BenOrRPC:
    """RPC server for inbound messages and best-effort broadcaster for outbound ones."""
    
    def __init__(self, node_id: int, host: str, port: int,
                 cluster_nodes: List[str], send_timeout: float = 1.0):
        self.node_id = node_id
        self.host = host
        self.port = port
        self.cluster_nodes = list(cluster_nodes)
        self.send_timeout = send_timeout
        self.site: Optional[web.TCPSite] = None
        self.runner: Optional[web.AppRunner] = None
        self.app = web.Application()
        self.session: Optional[aiohttp.ClientSession] = None
        
        self.message_handler: Optional[MessageHandler] = None
    
    async def start(self) -> None:
        """Start the RPC server and the outbound client session."""
        self.app.add_routes([
            web.post('/message', self._handle_message),
        ])
        
        connector = TCPConnector(ssl=False, limit=100)
        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.send_timeout),
            connector=connector
        )
        
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        self.site = web.TCPSite(self.runner, self.host, self.port)
        await self.site.start()
        
        logger.info(f"RPC server started on {self.host}:{self.port}")
    
    async def stop(self) -> None:
        """Stop the RPC server."""
        if self.runner:
            await self.runner.cleanup()
        
        if self.session:
            await self.session.close()
        
        logger.info("RPC server stopped")
    
    def register_message_handler(self, handler: MessageHandler) -> None:
        """Register a handler for delivered protocol messages."""
        self.message_handler = handler
    
    async def _handle_message(self, request: web.Request) -> web.Response:
        """Handle an incoming protocol message. Well-formed messages are always acknowledged."""
        if not self.message_handler:
            return web.Response(status=501, text="Not implemented")
        
        try:
            data = await request.json()
            message = Message.from_dict(data)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Node {self.node_id} rejected malformed message: {e}")
            return web.Response(status=400, text=str(e))
        
        retained = await self.message_handler(message)
        logger.debug(
            f"Node {self.node_id} received {message.phase.value} from {message.sender_id} "
            f"for round {message.round} (retained={retained})"
        )
        return web.Response(text="OK")
    
    async def send(self, node_address: str, message: Message) -> None:
        """Post one message to one node. Raises on delivery failure."""
        if node_address.startswith("http://"):
            url = f"{node_address}/message"
        else:
            url = f"http://{node_address}/message"
        
        async with self.session.post(url, json=message.to_dict()) as resp:
            await resp.read()
    
    async def broadcast(self, message: Message) -> None:
        """
        Send a message to every node in the cluster, this node included.

        Sends run concurrently with no ordering between peers. Failures are
        logged and dropped; there is no retry.
        """
        tasks = [self.send(address, message) for address in self.cluster_nodes]
        results = await asyncio.gather(*tasks, return_exceptions=True)
        
        for address, result in zip(self.cluster_nodes, results):
            if isinstance(result, Exception):
                logger.debug(f"Node {self.node_id} failed to deliver to {address}: {result!r}")
