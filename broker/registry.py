# mtls_broker/broker/registry.py

from typing import Dict, List, Optional

from .channel import ClientChannel


class ConnectionRegistry:
    """
    Insertion-ordered set of connected channels keyed by channel id.

    add() and remove() never suspend, so under asyncio they cannot
    interleave with each other. Both are idempotent.
    """
    def __init__(self):
        # dicts keep insertion order
        self._channels: Dict[str, ClientChannel] = {}

    def add(self, channel: ClientChannel) -> bool:
        """Returns False if the channel was already registered."""
        if channel.id in self._channels:
            return False
        self._channels[channel.id] = channel
        return True

    def remove(self, channel: ClientChannel) -> bool:
        """Returns False if the channel was not registered."""
        return self._channels.pop(channel.id, None) is not None

    def get(self, channel_id: str) -> Optional[ClientChannel]:
        return self._channels.get(channel_id)

    def snapshot(self) -> List[ClientChannel]:
        return list(self._channels.values())

    def count(self) -> int:
        return len(self._channels)

    def clear(self) -> None:
        self._channels.clear()

    def __contains__(self, channel: ClientChannel) -> bool:
        return channel.id in self._channels

    def __len__(self) -> int:
        return len(self._channels)
