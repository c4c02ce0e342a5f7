import asyncio
from abc import ABC, abstractmethod
from enum import IntFlag
from typing import Any, Callable, NamedTuple, cast

from mypy_extensions import Arg

from .config import PORT, READSIZE
from .utils.io import InputBuffer, OutputBuffer
from .utils.logging import debug, logged

# --
# The buffered duplex stream the protocol engine runs on. The engine only
# sees the `Transport` interface, `BufferEvent` implements it on top of an
# asyncio event loop.


class StatusFlag(IntFlag):
	"""Status bits passed to status callbacks, same values as libevent's
	`BEV_EVENT_*`."""

	Reading = 0x01
	Writing = 0x02
	EOF = 0x10
	Error = 0x20
	Timeout = 0x40
	Connected = 0x80


TStreamCallback = Callable[[Arg("Transport", "transport")], None]
TStatusChanged = Callable[
	[Arg("Transport", "transport"), Arg(StatusFlag, "flags")], None
]


class Transport(ABC):
	"""A buffered duplex stream notifying its owner of data arrival and
	status changes."""

	def __init__(
		self,
		*,
		onRead: TStreamCallback | None = None,
		onWrite: TStreamCallback | None = None,
		onStatus: TStatusChanged | None = None,
	) -> None:
		self.input: InputBuffer = InputBuffer()
		self.output: OutputBuffer = OutputBuffer()
		self.onRead: TStreamCallback | None = onRead
		# Reserved, never triggered by the memcache client
		self.onWrite: TStreamCallback | None = onWrite
		self.onStatus: TStatusChanged | None = onStatus

	def notifyRead(self) -> None:
		if self.onRead:
			self.onRead(self)

	def notifyStatus(self, flags: StatusFlag) -> None:
		if self.onStatus:
			self.onStatus(self, flags)

	@abstractmethod
	def connect(self, address: str) -> "Transport":
		"""Starts connecting to the address, the outcome is notified
		as a status change."""

	@abstractmethod
	def close(self) -> "Transport":
		"""Closes the connection, without notifying a status change."""

	def free(self) -> None:
		"""Closes the transport and drops the callbacks, the transport
		can't be used afterwards."""
		self.close()
		self.onRead = None
		self.onWrite = None
		self.onStatus = None


class Endpoint(NamedTuple):
	"""Where to connect, either `host`/`port` or a UNIX socket `path`."""

	host: str | None = None
	port: int | None = None
	path: str | None = None

	@staticmethod
	def Parse(address: str, port: int = PORT) -> "Endpoint":
		"""Parses `host:port`, `host`, `[ipv6]:port` or a socket path."""
		if address.startswith("/") or address.startswith("."):
			return Endpoint(path=address)
		elif address.startswith("["):
			i = address.find("]")
			if i == -1:
				raise ValueError(f"Malformed IPv6 address: {address}")
			rest = address[i + 1 :]
			return Endpoint(
				address[1:i], int(rest[1:]) if rest.startswith(":") else port
			)
		elif address.count(":") == 1:
			host, p = address.split(":", 1)
			return Endpoint(host, int(p))
		else:
			return Endpoint(address, port)


class BufferEventProtocol(asyncio.BufferedProtocol):
	"""Relays the events of one asyncio connection to its buffer event,
	until detached."""

	def __init__(self, event: "BufferEvent", size: int = READSIZE) -> None:
		self.event: BufferEvent | None = event
		self.buffer: bytearray = bytearray(size)

	def connection_made(self, transport: asyncio.BaseTransport) -> None:
		if self.event:
			self.event.onConnectionMade(self, transport)
		else:
			# Closed while connecting
			transport.close()

	def get_buffer(self, sizehint: int) -> memoryview:
		return memoryview(self.buffer)

	def buffer_updated(self, nbytes: int) -> None:
		if self.event:
			self.event.onDataReceived(self.buffer[:nbytes])

	def eof_received(self) -> bool | None:
		# Lets asyncio close the transport, `connection_lost` follows
		return None

	def connection_lost(self, exc: Exception | None) -> None:
		if self.event:
			self.event.onConnectionLost(exc)

	def detach(self) -> None:
		self.event = None


class BufferEvent(Transport):
	"""A `Transport` on an asyncio event loop. When no loop is given, the
	running loop is used at connection time."""

	def __init__(
		self,
		loop: asyncio.AbstractEventLoop | None = None,
		*,
		onRead: TStreamCallback | None = None,
		onWrite: TStreamCallback | None = None,
		onStatus: TStatusChanged | None = None,
		readsize: int = READSIZE,
	) -> None:
		super().__init__(onRead=onRead, onWrite=onWrite, onStatus=onStatus)
		self.loop: asyncio.AbstractEventLoop | None = loop
		self.readsize: int = readsize
		self.protocol: BufferEventProtocol | None = None
		self.transport: asyncio.Transport | None = None
		self.connecting: asyncio.Task[Any] | None = None
		self.error: BaseException | None = None

	def connect(self, address: str) -> "BufferEvent":
		loop = self.loop or asyncio.get_running_loop()
		endpoint = Endpoint.Parse(address)
		self.close()
		self.input.reset()
		self.error = None
		protocol = BufferEventProtocol(self, self.readsize)
		self.protocol = protocol
		logged(debug) and debug(
			"Connecting", Address=address, Event=f"{id(self):x}"
		)
		self.connecting = loop.create_task(self._connect(endpoint, protocol))
		return self

	async def _connect(self, endpoint: Endpoint, protocol: BufferEventProtocol) -> None:
		loop = self.loop or asyncio.get_running_loop()
		try:
			if endpoint.path:
				await loop.create_unix_connection(lambda: protocol, endpoint.path)
			else:
				await loop.create_connection(
					lambda: protocol, endpoint.host, endpoint.port
				)
		except OSError as e:
			if protocol.event is self:
				protocol.detach()
				self.protocol = None
				self.error = e
				self.connecting = None
				self.notifyStatus(StatusFlag.Error | StatusFlag.Writing)

	def onConnectionMade(
		self, protocol: BufferEventProtocol, transport: asyncio.BaseTransport
	) -> None:
		stream = cast(asyncio.Transport, transport)
		self.transport = stream
		self.connecting = None
		self.output.flush = stream.write
		# Data written while connecting goes out now
		self.output.release()
		self.notifyStatus(StatusFlag.Connected)

	def onDataReceived(self, data: bytes | bytearray) -> None:
		self.input.add(data)
		self.notifyRead()

	def onConnectionLost(self, exc: Exception | None) -> None:
		if self.protocol:
			self.protocol.detach()
		self.protocol = None
		self.transport = None
		self.output.flush = None
		if exc is None:
			self.notifyStatus(StatusFlag.EOF | StatusFlag.Reading)
		else:
			self.error = exc
			self.notifyStatus(StatusFlag.Error | StatusFlag.Reading)

	@property
	def isConnected(self) -> bool:
		return self.transport is not None and not self.transport.is_closing()

	def close(self) -> "BufferEvent":
		if self.protocol:
			self.protocol.detach()
			self.protocol = None
		if self.connecting:
			self.connecting.cancel()
			self.connecting = None
		if self.transport:
			self.transport.close()
			self.transport = None
		self.output.flush = None
		self.output.reset()
		return self


# EOF
