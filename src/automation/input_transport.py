"""Outbound controller transports: UDP to a Luma3DS console, or an in-memory mock."""
from __future__ import annotations

import logging
import socket
from typing import Optional

from src.automation.encoding import encode_packet
from src.models import InputCommand

logger = logging.getLogger(__name__)

DEFAULT_PORT = 4950


def split_address(address: str, default_port: int = DEFAULT_PORT) -> tuple[str, int]:
    """'10.0.0.5:4950' -> ('10.0.0.5', 4950); a bare host uses ``default_port``."""
    text = (address or "").strip()
    host, sep, port = text.rpartition(":")
    if sep and port.isdigit():
        return host, int(port)
    return text, default_port


class InputTransport:
    """Base transport. Subclasses implement ``connect`` and ``_send``."""

    def __init__(self) -> None:
        self._connected = False

    def connect(self, address: str) -> bool:
        raise NotImplementedError

    def is_connected(self) -> bool:
        return self._connected

    def send(self, command: InputCommand) -> bool:
        if not self._connected:
            logger.debug("send() ignored; transport not connected")
            return False
        return self._send(command)

    def release_all(self) -> bool:
        return self.send(InputCommand())

    def close(self) -> None:
        self._connected = False

    def describe(self) -> str:
        return type(self).__name__

    def _send(self, command: InputCommand) -> bool:
        raise NotImplementedError


class UdpInputTransport(InputTransport):
    """Sends encoded packets over UDP to the console's input-redirection port."""

    def __init__(self, default_port: int = DEFAULT_PORT):
        super().__init__()
        self._default_port = default_port
        self._sock: Optional[socket.socket] = None
        self._target: Optional[tuple[str, int]] = None

    def connect(self, address: str) -> bool:
        host, port = split_address(address, self._default_port)
        if not host:
            logger.error("No console address configured")
            return False
        try:
            self.close()
            self._sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            self._target = (host, port)
        except OSError as e:
            logger.error("Could not open UDP socket for %s:%d: %s", host, port, e)
            self._sock = None
            return False
        self._connected = True
        logger.info("Input transport ready: %s", self.describe())
        return True

    def _send(self, command: InputCommand) -> bool:
        if self._sock is None or self._target is None:
            return False
        try:
            self._sock.sendto(encode_packet(command), self._target)
        except OSError as e:
            logger.warning("UDP send to %s:%d failed: %s", self._target[0], self._target[1], e)
            return False
        return True

    def close(self) -> None:
        if self._sock is not None:
            try:
                self._sock.close()
            except OSError as e:
                logger.debug("Socket close failed: %s", e)
        self._sock = None
        self._connected = False

    def describe(self) -> str:
        if self._target is None:
            return "UdpInputTransport(unconnected)"
        return f"UdpInputTransport({self._target[0]}:{self._target[1]})"


class MockInputTransport(InputTransport):
    """Records every command instead of sending it. Used for dry runs and tests."""

    def __init__(self) -> None:
        super().__init__()
        self.address = ""
        self.command_log: list[InputCommand] = []

    def connect(self, address: str) -> bool:
        self.address = address
        self._connected = True
        return True

    def _send(self, command: InputCommand) -> bool:
        self.command_log.append(command)
        return True

    def clear_log(self) -> None:
        self.command_log.clear()

    def describe(self) -> str:
        return f"MockInputTransport({self.address})"
