"""Control API for a Ben-Or node."""
import asyncio
import logging
from typing import Any, Dict, Optional, Set

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from benor.node import BenOrNode

logger = logging.getLogger(__name__)


class NodeStateModel(BaseModel):
    """Snapshot of a node's protocol state."""
    killed: bool
    x: Optional[int] = None
    decided: Optional[bool] = None
    k: Optional[int] = None


class WebSocketManager:
    """Manages active WebSocket connections."""
    
    def __init__(self):
        self.active_connections: Set[WebSocket] = set()
    
    async def connect(self, websocket: WebSocket) -> None:
        """Connect a new WebSocket client."""
        await websocket.accept()
        self.active_connections.add(websocket)
        logger.info(f"WebSocket client connected. Active connections: {len(self.active_connections)}")
    
    def disconnect(self, websocket: WebSocket) -> None:
        """Disconnect a WebSocket client."""
        self.active_connections.discard(websocket)
        logger.info(f"WebSocket client disconnected. Active connections: {len(self.active_connections)}")
    
    async def broadcast(self, message: Dict[str, Any]) -> None:
        """Broadcast a message to all connected clients."""
        if not self.active_connections:
            return
        
        disconnected = set()
        for connection in list(self.active_connections):
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.error(f"Error broadcasting to client: {e}")
                disconnected.add(connection)
        
        for connection in disconnected:
            self.active_connections.discard(connection)


class BenOrAPI:
    """Lifecycle control surface for an external orchestrator."""
    
    def __init__(self, node: BenOrNode, port: int, host: str = "0.0.0.0"):
        self.node = node
        self.port = port
        self.host = host
        self.app = FastAPI(title="Ben-Or Consensus API")
        self.websocket_manager = WebSocketManager()
        
        self.setup_routes()
        
        # Background tasks
        self.background_tasks = set()
        self.update_task: Optional[asyncio.Task] = None
        self.server = None
        
        logger.info(f"Initialized BenOrAPI server on port {port}")
    
    def state_payload(self) -> Dict[str, Any]:
        return NodeStateModel(**self.node.get_state().to_dict()).model_dump()
    
    def setup_routes(self) -> None:
        """Set up API routes."""
        
        @self.app.get("/status", response_class=PlainTextResponse)
        async def get_status() -> PlainTextResponse:
            """Liveness probe."""
            if not self.node.is_live():
                return PlainTextResponse("faulty", status_code=500)
            return PlainTextResponse("live")
        
        @self.app.get("/start", response_class=PlainTextResponse)
        async def start() -> str:
            """Begin consensus. Redundant requests are acknowledged and ignored."""
            started = self.node.start()
            logger.debug(f"Start requested for node {self.node.node_id} (started={started})")
            return "OK"
        
        @self.app.get("/stop", response_class=PlainTextResponse)
        async def stop() -> str:
            """Kill the node. Idempotent."""
            await self.node.stop()
            return "OK"
        
        @self.app.get("/getState", response_model=NodeStateModel)
        async def get_state() -> Dict[str, Any]:
            """Get the current protocol state of the node."""
            return self.state_payload()
        
        @self.app.websocket("/ws")
        async def websocket_endpoint(websocket: WebSocket) -> None:
            """WebSocket endpoint for state updates."""
            await self.websocket_manager.connect(websocket)
            await websocket.send_json({"type": "state", "data": self.state_payload()})
            
            try:
                while True:
                    # Keep connection alive
                    await websocket.receive_text()
            except WebSocketDisconnect:
                self.websocket_manager.disconnect(websocket)
        
        logger.info("API routes set up successfully")
    
    async def broadcast_update(self) -> None:
        """Broadcast current state to all websocket clients."""
        await self.websocket_manager.broadcast({
            "type": "state",
            "data": self.state_payload()
        })
    
    async def start_periodic_updates(self) -> None:
        """Push state to websocket clients once per second."""
        logger.info("Starting periodic updates")
        while True:
            try:
                await self.broadcast_update()
            except Exception as e:
                logger.error(f"Error pushing state update: {e}", exc_info=True)
            await asyncio.sleep(1)
    
    async def start(self) -> None:
        """Start the API server."""
        import uvicorn
        
        logger.info(f"Starting API server on port {self.port}")
        
        self.update_task = asyncio.create_task(self.start_periodic_updates())
        self.background_tasks.add(self.update_task)
        self.update_task.add_done_callback(self.background_tasks.discard)
        
        config = uvicorn.Config(
            app=self.app,
            host=self.host,
            port=self.port,
            log_level="info"
        )
        self.server = uvicorn.Server(config)
        try:
            await self.server.serve()
        finally:
            self.update_task.cancel()
            await asyncio.gather(self.update_task, return_exceptions=True)
    
    async def stop(self) -> None:
        """Ask a running API server to exit."""
        if self.server:
            self.server.should_exit = True
