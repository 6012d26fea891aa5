"""WebSocket server that polls the BTC/USD price and streams it to connected clients."""

__version__ = "0.1.0"
__all__ = ["app", "handler", "hub", "memory", "provider"]