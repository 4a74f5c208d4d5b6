"""
Local TCP port allocation for the media server.
"""
import random
import socket
from typing import Callable, Optional

from echoplayer.internal.constants import MEDIA_SERVER_HOST, MEDIA_SERVER_PORT_RANGE
from echoplayer.internal.logging import get_logger
from echoplayer.kernel.errors import PortExhaustionError

logger = get_logger(__name__)


def is_port_available(port: int, host: str = MEDIA_SERVER_HOST) -> bool:
    """
    True when `port` can be bound on `host` right now.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


class PortAllocator:
    """
    Picks a free port: the preferred one first, then the bounded range
    scanned from a random offset with wrap-around.
    """

    def __init__(
        self,
        port_range: tuple[int, int] = MEDIA_SERVER_PORT_RANGE,
        host: str = MEDIA_SERVER_HOST,
        probe: Callable[[int, str], bool] = is_port_available,
        rng: Optional[random.Random] = None,
    ):
        low, high = port_range
        if low > high:
            raise ValueError(f"Invalid port range {port_range}")
        self.low = low
        self.high = high
        self.host = host
        self._probe = probe
        self._rng = rng or random.Random()

    def candidates(self, preferred: Optional[int] = None) -> list[int]:
        size = self.high - self.low + 1
        offset = self._rng.randrange(size)
        ordered = [self.low + (offset + i) % size for i in range(size)]
        if preferred is not None:
            ordered = [preferred] + [p for p in ordered if p != preferred]
        return ordered

    def allocate(self, preferred: Optional[int] = None, host: Optional[str] = None) -> int:
        host = host or self.host
        for port in self.candidates(preferred):
            if self._probe(port, host):
                if preferred is not None and port != preferred:
                    logger.info("Preferred port unavailable, using another", preferred=preferred, port=port)
                return port
        raise PortExhaustionError(f"No free port in {self.low}-{self.high} on {host}")
