"""Network liveness probing.

This module provides:
- NetworkChecker: Whether the card is still reachable
- current_ssid: SSID of the active wireless network, per platform
"""

from __future__ import annotations

import asyncio
import logging
import platform
import socket
import subprocess
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cardsync.client.card import CardIdentity

logger = logging.getLogger(__name__)

CHECK_TIMEOUT = 2.0  # seconds
COMMAND_TIMEOUT = 5.0  # seconds


def _run(args: list[str]) -> str | None:
    try:
        result = subprocess.run(
            args,
            capture_output=True,
            text=True,
            errors="replace",
            timeout=COMMAND_TIMEOUT,
            check=True,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug(f"{args[0]} failed: {e}")
        return None
    return result.stdout


def _linux_ssid() -> str | None:
    out = _run(["nmcli", "-t", "-f", "ACTIVE,SSID", "dev", "wifi"])
    if out:
        for line in out.splitlines():
            parts = line.strip().split(":", 1)
            if len(parts) == 2 and parts[0] == "yes" and parts[1]:
                return parts[1]
    out = _run(["iwgetid", "-r"])
    if out and out.strip():
        return out.strip()
    return None


def _macos_ssid() -> str | None:
    out = _run(["networksetup", "-getairportnetwork", "en0"])
    if out and ":" in out:
        ssid = out.split(":", 1)[1].strip()
        return ssid or None
    return None


def _windows_ssid() -> str | None:
    out = _run(["netsh", "wlan", "show", "interfaces"])
    if not out:
        return None
    for line in out.splitlines():
        key, sep, value = line.partition(":")
        if sep and key.strip() == "SSID":
            return value.strip() or None
    return None


def current_ssid() -> str | None:
    """Get the SSID of the active wireless network.

    Returns:
        SSID, or None if not connected or the platform tools are missing.
    """
    system = platform.system()
    if system == "Linux":
        return _linux_ssid()
    if system == "Darwin":
        return _macos_ssid()
    if system == "Windows":
        return _windows_ssid()
    logger.debug(f"SSID lookup not supported on {system}")
    return None


def _has_route(host: str, port: int) -> bool:
    # Connecting a UDP socket sends nothing but fails without a route
    try:
        infos = socket.getaddrinfo(host, port, type=socket.SOCK_DGRAM)
    except OSError:
        return False
    for family, socktype, proto, _, address in infos:
        try:
            with socket.socket(family, socktype, proto) as sock:
                sock.connect(address)
                return True
        except OSError:
            continue
    return False


class NetworkChecker:
    """Checks whether the card can still be reached.

    Used before each run and polled by the liveness monitor while a
    transfer is in progress.
    """

    def __init__(self, host: str, port: int = 80, timeout: float = CHECK_TIMEOUT) -> None:
        self.host = host
        self.port = port
        self.timeout = timeout

    async def is_network_connected(self, card: CardIdentity | None = None) -> bool:
        """Check if a route to the card exists.

        When the card was reached over its own wireless network, the active
        SSID must also still be the card's.

        Args:
            card: Card information, if known.

        Returns:
            True if the card is reachable.
        """
        try:
            has_route = await asyncio.wait_for(
                asyncio.to_thread(_has_route, self.host, self.port), self.timeout
            )
        except TimeoutError:
            has_route = False
        if not has_route:
            logger.debug(f"No route to {self.host}")
            return False

        if card is not None and card.is_wireless_connected and card.ssid:
            return await self.is_wireless_connected(card.ssid)
        return True

    async def is_wireless_connected(self, ssid: str) -> bool:
        """Check if the active wireless network has the given SSID."""
        active = await asyncio.to_thread(current_ssid)
        connected = active == ssid
        logger.debug(f"Active SSID {active!r}, card SSID {ssid!r}")
        return connected
