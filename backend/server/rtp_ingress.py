"""
UDP RTP listener.

Responsibilities:
- Bind one UDP socket and receive raw RTP datagrams
- Hand them, in arrival order, to StreamRouter.ingest with the call and
  channel this listener serves
- Drop (and count) datagrams when the inbox is full; the socket callback
  never blocks

Non-responsibilities:
- No RTP parsing (the router decodes and drops malformed packets)
- No outbound audio
"""

from __future__ import annotations

import asyncio
import time
from typing import Optional

from constants import STREAM_QUEUE_CAPACITY
from observability.logger import EventLogger
from routing.router import StreamRouter

_Datagram = tuple[bytes, float]


class RTPIngress(asyncio.DatagramProtocol):
    """
    Feeds one call's datagrams into a StreamRouter.

    Usage:
        ingress = RTPIngress(router, call_id="c1", channel_id="v1", log=log)
        host, port = await ingress.start("0.0.0.0", 5004)
        ...
        await ingress.stop()
    """

    def __init__(
        self,
        router: StreamRouter,
        *,
        call_id: str,
        channel_id: str,
        log: EventLogger,
        capacity: int = STREAM_QUEUE_CAPACITY,
    ) -> None:
        self._router = router
        self._call_id = call_id
        self._channel_id = channel_id
        self._log = log.bind(component="rtp_ingress", call_id=call_id, channel_id=channel_id)

        self._inbox: asyncio.Queue[_Datagram] = asyncio.Queue(maxsize=capacity)
        self._transport: Optional[asyncio.DatagramTransport] = None
        self._pump: Optional[asyncio.Task[None]] = None

        self.received = 0
        self.dropped = 0

    @property
    def address(self) -> tuple[str, int] | None:
        if self._transport is None:
            return None
        host, port = self._transport.get_extra_info("sockname")[:2]
        return host, port

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, host: str, port: int) -> tuple[str, int]:
        """Bind the socket and start forwarding. Returns the bound address."""
        if self._transport is not None:
            raise RuntimeError("RTP ingress already started")

        loop = asyncio.get_running_loop()
        transport, _ = await loop.create_datagram_endpoint(lambda: self, local_addr=(host, port))
        self._transport = transport
        self._pump = asyncio.create_task(self._forward(), name=f"rtp-ingress-{self._call_id}")

        address = self.address
        assert address is not None
        self._log.info("RTP_INGRESS_STARTED", host=address[0], port=address[1])
        return address

    async def stop(self) -> None:
        """Close the socket and stop forwarding; queued datagrams are discarded."""
        if self._transport is not None:
            self._transport.close()
        if self._pump is not None:
            self._pump.cancel()
            try:
                await self._pump
            except asyncio.CancelledError:
                if not self._pump.cancelled():
                    raise
            self._pump = None

        self._log.info("RTP_INGRESS_STOPPED", received=self.received, dropped=self.dropped)

    # ------------------------------------------------------------------
    # asyncio.DatagramProtocol
    # ------------------------------------------------------------------

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        assert isinstance(transport, asyncio.DatagramTransport)
        self._transport = transport

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        self.received += 1
        try:
            self._inbox.put_nowait((data, time.time()))
        except asyncio.QueueFull:
            self.dropped += 1
            self._log.warning(
                "RTP_INGRESS_FULL_DROP",
                remote=f"{addr[0]}:{addr[1]}",
                dropped=self.dropped,
            )

    def error_received(self, exc: Exception) -> None:
        self._log.warning(
            "RTP_INGRESS_SOCKET_ERROR",
            exception=type(exc).__name__,
            message=str(exc),
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _forward(self) -> None:
        while True:
            data, arrival_time = await self._inbox.get()
            try:
                await self._router.ingest(
                    data,
                    call_id=self._call_id,
                    channel_id=self._channel_id,
                    arrival_time=arrival_time,
                )
            except Exception as exc:  # pylint: disable=broad-exception-caught
                self._log.error(
                    "RTP_INGRESS_FORWARD_FAILED",
                    exception=type(exc).__name__,
                    message=str(exc),
                )
