"""Node RPC: transport seam, round-robin gateway, typed calls."""

from tzops.rpc.gateway import RpcGateway
from tzops.rpc.node import NodeClient
from tzops.rpc.transport import HttpxTransport, NodeTransport

__all__ = ["HttpxTransport", "NodeClient", "NodeTransport", "RpcGateway"]
