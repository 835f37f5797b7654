"""Command-line interface for the Ben-Or consensus implementation."""
import argparse
import asyncio
import logging
import signal
from typing import List

from benor.config import BenOrConfig
from benor.majority import TieBreaker
from benor.node import BenOrNode
from api.server import BenOrAPI


def setup_logging(level: int = logging.INFO) -> None:
    """Set up logging configuration."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[logging.StreamHandler()]
    )


async def run_node(config: BenOrConfig, autostart: bool = False) -> None:
    """Run a Ben-Or node with the given configuration."""
    node = BenOrNode(config)
    
    # Start API server if configured
    api_server = None
    if config.api_port:
        api_server = BenOrAPI(node, config.api_port)
        api_task = asyncio.create_task(api_server.start())
    
    node_task = asyncio.create_task(node.serve(autostart=autostart))
    
    loop = asyncio.get_running_loop()
    
    def handle_signal():
        logging.info("Shutting down...")
        node.shutdown_event.set()
        if api_server:
            api_task.cancel()
    
    for sig in [signal.SIGINT, signal.SIGTERM]:
        loop.add_signal_handler(sig, handle_signal)
    
    try:
        await node_task
    except asyncio.CancelledError:
        pass
    finally:
        logging.info("Node stopped")


def parse_cluster_nodes(nodes_str: str) -> List[str]:
    """Parse the cluster nodes string into a list of node addresses."""
    return [node.strip() for node in nodes_str.split(",") if node.strip()]


def main() -> None:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(description="Ben-Or Consensus Node")
    
    parser.add_argument("--id", type=int, required=True, help="Node ID (index into --cluster)")
    parser.add_argument("--cluster", required=True, help="Comma-separated list of all cluster nodes (host:port)")
    parser.add_argument("--faults", type=int, required=True, help="Number of faulty nodes F")
    parser.add_argument("--value", type=int, choices=[0, 1], default=0, help="Initial value")
    parser.add_argument("--faulty", action="store_true", help="Run as a faulty, non-participating node")
    parser.add_argument("--host", default="localhost", help="Host to bind to")
    parser.add_argument("--port", type=int, help="Port to bind to (defaults to this node's --cluster entry)")
    parser.add_argument("--api-port", type=int, help="Port for the HTTP control API")
    parser.add_argument("--tie-breaker", choices=[t.value for t in TieBreaker],
                        default=TieBreaker.DETERMINISTIC.value, help="Tie-break policy")
    parser.add_argument("--seed", type=int, help="Seed for the random tie-breaker")
    parser.add_argument("--max-wait", type=int, default=20, help="Quorum wait per phase in milliseconds")
    parser.add_argument("--poll-interval", type=int, default=5, help="Kill check interval in milliseconds")
    parser.add_argument("--forced-decision-round", type=int, default=10,
                        help="Round at which an undecided node decides anyway (0 disables)")
    parser.add_argument("--autostart", action="store_true", help="Start consensus without waiting for /start")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    
    args = parser.parse_args()
    
    log_level = logging.DEBUG if args.debug else logging.INFO
    setup_logging(log_level)
    
    cluster_nodes = parse_cluster_nodes(args.cluster)
    if not 0 <= args.id < len(cluster_nodes):
        parser.error(f"--id must index into --cluster (0..{len(cluster_nodes) - 1})")
    
    port = args.port
    if port is None:
        port = int(cluster_nodes[args.id].rsplit(":", 1)[1])
    
    config = BenOrConfig(
        node_id=args.id,
        cluster_nodes=cluster_nodes,
        faults=args.faults,
        initial_value=args.value,
        is_faulty=args.faulty,
        host=args.host,
        port=port,
        max_wait=args.max_wait,
        poll_interval=args.poll_interval,
        tie_breaker=TieBreaker(args.tie_breaker),
        seed=args.seed,
        forced_decision_round=args.forced_decision_round or None,
        api_port=args.api_port
    )
    
    asyncio.run(run_node(config, autostart=args.autostart))


if __name__ == "__main__":
    main()
