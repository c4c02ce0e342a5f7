from ..config import TRANSCRIPT_LIMIT
from ..utils.io import EOL, InputBuffer
from .model import TransportReadError

END: bytes = b"END"
# Memcached answers with one of these instead of a response block when
# it could not process the command.
ERRORS: frozenset[bytes] = frozenset((b"ERROR", b"CLIENT_ERROR", b"SERVER_ERROR"))


class TranscriptReader:
	"""Accumulates the lines of one response block, up to its terminator."""

	__slots__ = ["response", "error", "limit"]

	def __init__(self, limit: int = TRANSCRIPT_LIMIT) -> None:
		self.response: bytearray = bytearray()
		self.error: str | None = None
		self.limit: int = limit

	def feed(self, input: InputBuffer) -> bool:
		"""Drains the complete lines available in `input`. Returns `True`
		once a terminator line was read, `False` when more data is needed.
		Incomplete lines are left in the input buffer."""
		while (line := input.readLine(EOL)) is not None:
			head = line.strip().split(b" ", 1)[0]
			if head == END:
				return True
			elif head in ERRORS and not self.response:
				self.error = line.strip().decode(errors="replace")
				return True
			elif len(self.response) + len(line) + 2 > self.limit:
				raise TransportReadError(
					f"Response exceeds {self.limit} bytes without a terminator"
				)
			else:
				self.response += line
				self.response += EOL
		return False

	def clear(self) -> "TranscriptReader":
		self.response.clear()
		self.error = None
		return self

	def getResponse(self) -> bytes:
		return bytes(self.response)


# EOF
