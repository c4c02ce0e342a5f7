from typing import Iterator, NamedTuple

from ..utils.codec import decode
from ..utils.io import LF
from .model import ProtocolError, ResponseRecord

VALUE: str = "VALUE"


class ValueHeader(NamedTuple):
	key: str
	flags: int
	length: int


def readLine(response: bytes, start: int) -> tuple[bytes, int]:
	"""Reads the line starting at `start`, returning it without its
	terminator along with the offset right after it."""
	end = response.find(LF, start)
	if end == -1:
		return response[start:], len(response)
	line = response[start:end]
	return (line[:-1] if line.endswith(b"\r") else line), end + 1


def parseHeader(fields: list[str]) -> ValueHeader:
	if len(fields) < 4:
		raise ProtocolError(f"Incomplete value header: {' '.join(fields)}")
	try:
		flags = int(fields[2])
		length = int(fields[3])
	except ValueError:
		raise ProtocolError(f"Malformed value header: {' '.join(fields)}") from None
	if flags < 0 or length < 0:
		raise ProtocolError(f"Malformed value header: {' '.join(fields)}")
	return ValueHeader(fields[1], flags, length)


class ResponseParser:
	"""Decodes the transcript of a response block into records. The parser
	keeps no state, the same transcript always yields the same records."""

	def iterate(self, response: bytes) -> Iterator[ResponseRecord]:
		offset: int = 0
		while offset < len(response):
			line, offset = readLine(response, offset)
			fields = line.decode("ascii", errors="replace").split(" ")
			if fields[0] != VALUE:
				break
			header = parseHeader(fields)
			payload = response[offset : offset + header.length]
			# NOTE: The length is trusted as declared, the payload terminator
			# is skipped and not checked.
			offset += header.length + 2
			yield ResponseRecord(
				VALUE,
				header.key,
				header.flags,
				header.length,
				decode(payload, header.flags),
			)

	def parse(self, response: bytes) -> list[ResponseRecord]:
		return list(self.iterate(response))


# EOF
