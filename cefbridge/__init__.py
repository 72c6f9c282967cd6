"""Server side of a game-server to in-game browser bridge: packets, sockets, server and plugin."""

__version__ = "0.1.0"

__all__ = ["client", "config", "network", "packets", "plugin", "server", "wire"]