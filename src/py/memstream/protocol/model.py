from enum import Enum
from typing import Any, Callable, NamedTuple, TypeAlias

from mypy_extensions import Arg

# -----------------------------------------------------------------------------
#
# MARKERS
#
# -----------------------------------------------------------------------------


class Marker:
	"""A named singleton delivered in place of a value, only equal
	to itself."""

	__slots__ = ["id"]

	def __init__(self, id: str) -> None:
		self.id: str = id

	def __repr__(self) -> str:
		return self.id


# The key is not stored on the server. This is not the same as a stored
# `False` or `None`.
ABSENT = Marker("ABSENT")


class Failure(NamedTuple):
	"""Delivered to a result callback when no value could be obtained
	for the request."""

	kind: str
	message: str | None = None


DISCONNECTED = Failure("Disconnected", "Connection lost before the response")

# -----------------------------------------------------------------------------
#
# DATA MODEL
#
# -----------------------------------------------------------------------------

TResultCallback: TypeAlias = Callable[
	[Arg(str, "key"), Arg(Any, "value"), Arg(Any, "arg")], None
]
TStatusCallback: TypeAlias = Callable[[Arg(int, "flags"), Arg(Any, "arg")], None]


class ConnectionState(Enum):
	Disconnected = 0
	Connecting = 1
	Connected = 2
	Errored = 3


class ResponseRecord(NamedTuple):
	result: str
	key: str
	flags: int
	length: int
	value: Any


class PendingRequest(NamedTuple):
	"""A request written to the stream and still waiting for its
	response block."""

	keys: tuple[str, ...]
	onResult: TResultCallback
	arg: Any = None

	@property
	def key(self) -> str:
		return self.keys[0]


# -----------------------------------------------------------------------------
#
# ERRORS
#
# -----------------------------------------------------------------------------


class MemcacheError(Exception):
	pass


class ProtocolError(MemcacheError):
	"""The peer sent something that is not a valid response."""


class ProtocolDesyncError(ProtocolError):
	def __init__(self, key: str, expected: tuple[str, ...]):
		super().__init__(
			f"Response for key '{key}' does not match the pending request for: {', '.join(expected)}"
		)
		self.key = key
		self.expected = expected


class DecodeError(MemcacheError):
	pass


class UnsupportedEncodingError(DecodeError):
	def __init__(self, flags: int):
		super().__init__(f"Unsupported value encoding flags: {flags}")
		self.flags = flags


class TransportReadError(MemcacheError):
	pass


class ClientStateError(MemcacheError):
	pass


class NotConnectedError(ClientStateError):
	def __init__(self, state: ConnectionState):
		super().__init__(f"Client is not connected: {state.name}")
		self.state = state


class InvalidKeyError(MemcacheError, ValueError):
	pass


class RequestFailed(MemcacheError):
	def __init__(self, key: str, failure: Failure):
		super().__init__(
			f"Request for '{key}' failed: {failure.kind}{f' ({failure.message})' if failure.message else ''}"
		)
		self.key = key
		self.failure = failure


# EOF
