"""A browser client as the server tracks it."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class State(Enum):
    """Where a client is in the join handshake."""

    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass
class Client:
    """A player's open connection: player id, network peer and address."""

    player_id: int
    peer: int
    addr: tuple[str, int]
    state: State = State.CONNECTING

    def is_connected(self) -> bool:
        """True once the client has completed the join handshake."""
        return self.state is State.CONNECTED