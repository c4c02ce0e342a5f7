import asyncio
from collections import deque
from typing import Any, Callable, Iterable

from .config import LOG_PROTOCOL, TRANSCRIPT_LIMIT
from .protocol.model import (
	ABSENT,
	DISCONNECTED,
	ClientStateError,
	ConnectionState,
	DecodeError,
	Failure,
	InvalidKeyError,
	MemcacheError,
	NotConnectedError,
	PendingRequest,
	ProtocolDesyncError,
	RequestFailed,
	ResponseRecord,
	TResultCallback,
	TStatusCallback,
	TransportReadError,
)
from .protocol.parser import ResponseParser
from .protocol.reader import TranscriptReader
from .transport import BufferEvent, StatusFlag, Transport
from .utils.io import DEFAULT_ENCODING
from .utils.logging import Logger, NullLogger, logged

# --
# An asynchronous memcache client, driven by the callbacks of its transport.
# Requests are pipelined on a single connection and their responses are
# matched to them in order.

MAX_KEY_LENGTH: int = 250

TTransportFactory = Callable[..., Transport]


def checkKey(key: str) -> bytes:
	"""Returns the key as bytes, raising `InvalidKeyError` when it can't be
	sent as is in a text protocol command."""
	if not isinstance(key, str) or not key:
		raise InvalidKeyError(f"Key must be a non-empty string, got: {key!r}")
	data = key.encode(DEFAULT_ENCODING)
	if len(data) > MAX_KEY_LENGTH:
		raise InvalidKeyError(f"Key is longer than {MAX_KEY_LENGTH} bytes: {key!r}")
	elif any(c <= 0x20 or c == 0x7F for c in data):
		raise InvalidKeyError(f"Key contains whitespace or control characters: {key!r}")
	return data


class MemcacheClient:
	"""Sends `get` requests over a transport and dispatches the values
	to the request callbacks.

	The callbacks are invoked on the reactor, as `onResult(key, value, arg)`,
	where `value` is the decoded value, `ABSENT` when the key is not stored,
	or a `Failure` when the response could not be obtained."""

	def __init__(
		self,
		reactor: asyncio.AbstractEventLoop | None = None,
		*,
		factory: TTransportFactory = BufferEvent,
		logger: Logger | None = None,
		limit: int = TRANSCRIPT_LIMIT,
	) -> None:
		self.reactor: asyncio.AbstractEventLoop | None = reactor
		self.factory: TTransportFactory = factory
		self.logger: Logger = logger or (Logger() if LOG_PROTOCOL else NullLogger())
		self.state: ConnectionState = ConnectionState.Disconnected
		self.requests: deque[PendingRequest] = deque()
		self.reader: TranscriptReader = TranscriptReader(limit)
		self.parser: ResponseParser = ResponseParser()
		self.onConnect: TStatusCallback | None = None
		self.onConnectArg: Any = None
		self.onError: TStatusCallback | None = None
		self.onErrorArg: Any = None
		self.transport: Transport = self.createTransport()

	def createTransport(self) -> Transport:
		return self.factory(
			self.reactor,
			onRead=self.onDataArrived,
			onWrite=self.onDataSending,
			onStatus=self.onStatusChanged,
		)

	@property
	def connected(self) -> bool:
		return self.state is ConnectionState.Connected

	@property
	def pending(self) -> int:
		return len(self.requests)

	# =========================================================================
	# API
	# =========================================================================

	def setErrorCallback(
		self, callback: TStatusCallback | None, arg: Any = None
	) -> "MemcacheClient":
		"""Registers the callback invoked with `(flags, arg)` each time
		the connection fails."""
		self.onError = callback
		self.onErrorArg = arg
		return self

	def connect(
		self, address: str, callback: TStatusCallback | None = None, arg: Any = None
	) -> "MemcacheClient":
		"""Connects to the memcache server at `address` (`host:port` or
		a UNIX socket path). The callback is invoked once with
		`(flags, arg)` as soon as the connection succeeds or fails."""
		if self.state in (ConnectionState.Connecting, ConnectionState.Connected):
			raise ClientStateError(f"Client is already {self.state.name.lower()}")
		state = self.state
		self.onConnect = callback
		self.onConnectArg = arg
		self.state = ConnectionState.Connecting
		self.reader.clear()
		logged(self.logger.debug) and self.logger.debug("Connecting", Address=address)
		try:
			self.transport.connect(address)
		except Exception:
			# Nothing was started, so `connect` can be retried
			self.state = state
			self.onConnect = None
			self.onConnectArg = None
			raise
		return self

	def get(
		self, key: str, callback: TResultCallback, arg: Any = None
	) -> "MemcacheClient":
		"""Requests the value stored for `key`."""
		return self.send((key,), callback, arg)

	def getMany(
		self, keys: Iterable[str], callback: TResultCallback, arg: Any = None
	) -> "MemcacheClient":
		"""Requests the values of all the `keys` in one command, the callback
		is invoked once per key."""
		keys = tuple(keys)
		if not keys:
			raise InvalidKeyError("At least one key is required")
		return self.send(keys, callback, arg)

	def send(
		self, keys: tuple[str, ...], callback: TResultCallback, arg: Any = None
	) -> "MemcacheClient":
		if self.state is not ConnectionState.Connected:
			raise NotConnectedError(self.state)
		command = b"get " + b" ".join(checkKey(_) for _ in keys) + b"\n"
		self.requests.append(PendingRequest(keys, callback, arg))
		self.transport.output.add(command)
		logged(self.logger.debug) and self.logger.debug(
			"Request sent", Keys=list(keys), Pending=len(self.requests)
		)
		return self

	def close(self) -> "MemcacheClient":
		"""Closes the connection right away, pending requests are failed
		with `DISCONNECTED`."""
		self.state = ConnectionState.Disconnected
		self.transport.close()
		self.reader.clear()
		self.flush(DISCONNECTED)
		return self

	# =========================================================================
	# ASYNC API
	# =========================================================================

	async def open(self, address: str) -> StatusFlag:
		"""Connects and waits for the outcome, raising `ConnectionError`
		when the connection failed."""
		loop = self.reactor or asyncio.get_running_loop()
		result: asyncio.Future[int] = loop.create_future()

		def onConnected(flags: int, arg: Any) -> None:
			if not result.done():
				result.set_result(flags)

		self.connect(address, onConnected)
		flags = StatusFlag(await result)
		if not flags & StatusFlag.Connected:
			raise ConnectionError(f"Could not connect to {address}: {flags!r}")
		return flags

	async def fetch(self, key: str) -> Any:
		"""Returns the value stored for `key` or `ABSENT`, raising
		`RequestFailed` when the request failed."""
		loop = self.reactor or asyncio.get_running_loop()
		result: asyncio.Future[Any] = loop.create_future()

		def onResult(key: str, value: Any, arg: Any) -> None:
			if result.done():
				pass
			elif isinstance(value, Failure):
				result.set_exception(RequestFailed(key, value))
			else:
				result.set_result(value)

		self.get(key, onResult)
		return await result

	# =========================================================================
	# TRANSPORT CALLBACKS
	# =========================================================================

	def onDataArrived(self, transport: Transport) -> None:
		# NOTE: Nothing may escape from here, or the client would stop
		# being in sync with its transport.
		input = transport.input
		# A callback may close the client while we dispatch
		while transport is self.transport and self.state is ConnectionState.Connected:
			try:
				if not self.reader.feed(input):
					break
			except TransportReadError as e:
				self.logger.error("Response could not be read", "TransportRead", Reason=str(e))
				self.onTransportError(StatusFlag.Error | StatusFlag.Reading)
				break
			response = self.reader.getResponse()
			error = self.reader.error
			self.reader.clear()
			if not self.requests:
				self.logger.error(
					"Response without pending request", "Unsolicited", Size=len(response)
				)
				continue
			self.dispatch(self.requests.popleft(), response, error)

	def onDataSending(self, transport: Transport) -> None:
		pass

	def onStatusChanged(self, transport: Transport, flags: int) -> None:
		if transport is not self.transport:
			return
		logged(self.logger.debug) and self.logger.debug(
			"Status changed", Flags=repr(StatusFlag(flags)), State=self.state.name
		)
		if flags & StatusFlag.Connected:
			self.state = ConnectionState.Connected
			self.reader.clear()
		elif flags & StatusFlag.Error:
			self.onTransportError(flags)
		else:
			self.state = ConnectionState.Disconnected
			self.reader.clear()
			self.flush(DISCONNECTED)
		# The connect callback is one-shot, whatever the outcome
		if self.onConnect:
			callback, arg = self.onConnect, self.onConnectArg
			self.onConnect = None
			self.onConnectArg = None
			self.invoke(callback, flags, arg)

	def onTransportError(self, flags: int) -> None:
		self.state = ConnectionState.Errored
		self.logger.error("Connection failed", "Connection", Flags=repr(StatusFlag(flags)))
		self.reader.clear()
		self.flush(DISCONNECTED)
		# The transport is replaced, so that `connect` starts afresh
		self.transport.free()
		self.transport = self.createTransport()
		if self.onError:
			self.invoke(self.onError, flags, self.onErrorArg)

	# =========================================================================
	# DISPATCHING
	# =========================================================================

	def dispatch(
		self, request: PendingRequest, response: bytes, error: str | None
	) -> None:
		try:
			records = self.parser.parse(response)
			for record in records:
				if record.key not in request.keys:
					raise ProtocolDesyncError(record.key, request.keys)
		except DecodeError as e:
			self.logger.error("Value could not be decoded", "Decode", Reason=str(e))
			self.fail(request, Failure("Decode", str(e)))
			return
		except ProtocolDesyncError as e:
			self.logger.error("Response does not match request", "Desync", Reason=str(e))
			self.fail(request, Failure("Desync", str(e)))
			return
		except MemcacheError as e:
			self.logger.error("Response could not be parsed", "Protocol", Reason=str(e))
			self.fail(request, Failure("Protocol", str(e)))
			return
		except Exception as e:
			# The request is already dequeued, it must still get its result
			self.logger.error("Response handling failed", "Protocol", Reason=str(e))
			self.logger.exception(e)
			self.fail(request, Failure("Protocol", f"[{e.__class__.__name__}] {e}"))
			return
		if error:
			kind, _, message = error.partition(" ")
			self.logger.error("Server replied with an error", kind, Message=message)
			self.fail(request, Failure(kind, message or None))
		elif len(request.keys) == 1:
			if records:
				for record in records:
					self.deliver(request, record.key, record.value)
			else:
				self.deliver(request, request.key, ABSENT)
		else:
			self.deliverMany(request, records)

	def deliverMany(
		self, request: PendingRequest, records: list[ResponseRecord]
	) -> None:
		found: set[str] = set()
		for record in records:
			found.add(record.key)
			self.deliver(request, record.key, record.value)
		for key in request.keys:
			if key not in found:
				found.add(key)
				self.deliver(request, key, ABSENT)

	def deliver(self, request: PendingRequest, key: str, value: Any) -> None:
		try:
			request.onResult(key, value, request.arg)
		except Exception as e:
			self.logger.error("Result callback failed", "Callback", Key=key, Reason=str(e))
			self.logger.exception(e)

	def fail(self, request: PendingRequest, failure: Failure) -> None:
		for key in request.keys:
			self.deliver(request, key, failure)

	def flush(self, failure: Failure) -> int:
		"""Fails all the pending requests, returning how many were."""
		count: int = 0
		while self.requests:
			self.fail(self.requests.popleft(), failure)
			count += 1
		return count

	def invoke(self, callback: TStatusCallback, flags: int, arg: Any) -> None:
		try:
			callback(flags, arg)
		except Exception as e:
			self.logger.error("Status callback failed", "Callback", Reason=str(e))
			self.logger.exception(e)


# EOF
