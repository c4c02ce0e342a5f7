from typing import Callable

DEFAULT_ENCODING: str = "utf8"
EOL: bytes = b"\r\n"
LF: bytes = b"\n"


def asBytes(value: str | bytes) -> bytes:
	if isinstance(value, bytes):
		return value
	elif isinstance(value, str):
		return bytes(value, DEFAULT_ENCODING)
	elif value is None:
		return b""
	else:
		raise ValueError(f"Expected bytes or str, got: {value}")


class InputBuffer:
	"""The read side of a buffered stream. Bytes are added as they arrive
	and consumed as lines or as raw byte counts."""

	__slots__ = ["buffer", "offset"]

	def __init__(self) -> None:
		self.buffer: bytearray = bytearray()
		# Where to resume looking for the line terminator
		self.offset: int = 0

	def __len__(self) -> int:
		return len(self.buffer)

	def add(self, chunk: bytes) -> "InputBuffer":
		self.buffer += chunk
		return self

	def readLine(self, eol: bytes = EOL) -> bytes | None:
		"""Returns the next line without its terminator, or `None` when no
		complete line is available. With the default `EOL`, framing is
		strict: a line ends only once both `\\r` and `\\n` were seen."""
		end = self.buffer.find(eol, self.offset)
		if end == -1:
			self.offset = max(0, len(self.buffer) - len(eol) + 1)
			return None
		line = bytes(self.buffer[:end])
		del self.buffer[: end + len(eol)]
		self.offset = 0
		return line

	def read(self, size: int) -> bytes:
		res = bytes(self.buffer[:size])
		del self.buffer[:size]
		self.offset = 0
		return res

	def drain(self) -> bytes:
		return self.read(len(self.buffer))

	def reset(self) -> "InputBuffer":
		self.buffer.clear()
		self.offset = 0
		return self


class OutputBuffer:
	"""The write side of a buffered stream. Data stays here until the
	`flush` callback is set and accepts it."""

	__slots__ = ["buffer", "flush"]

	def __init__(self, flush: Callable[[bytes], None] | None = None) -> None:
		self.buffer: bytearray = bytearray()
		self.flush: Callable[[bytes], None] | None = flush

	def __len__(self) -> int:
		return len(self.buffer)

	def add(self, data: str | bytes) -> "OutputBuffer":
		self.buffer += asBytes(data)
		return self.release()

	def release(self) -> "OutputBuffer":
		if self.flush and self.buffer:
			data = bytes(self.buffer)
			self.buffer.clear()
			self.flush(data)
		return self

	def reset(self) -> "OutputBuffer":
		self.buffer.clear()
		return self


# EOF
