from rippled_remote.account import Account
from rippled_remote.config import RemoteConfig, ServerConfig, load_config
from rippled_remote.connection import Connection
from rippled_remote.errors import ConfigurationError, LocalError, RemoteError, RemoteException
from rippled_remote.orderbook import OrderBook
from rippled_remote.pathfind import PathFind
from rippled_remote.remote import Remote
from rippled_remote.request import Request
from rippled_remote.transaction import Transaction, is_rejected, result_band
from rippled_remote.transport import Transport, TransportClosed, WebsocketTransport

__all__ = [
    "Account",
    "ConfigurationError",
    "Connection",
    "LocalError",
    "OrderBook",
    "PathFind",
    "Remote",
    "RemoteConfig",
    "RemoteError",
    "RemoteException",
    "Request",
    "ServerConfig",
    "Transaction",
    "Transport",
    "TransportClosed",
    "WebsocketTransport",
    "is_rejected",
    "load_config",
    "result_band",
]
