import io
import pickle  # nosec: B403
import zlib
from abc import ABC, abstractmethod
from enum import IntEnum
from typing import Any, Callable

from ..protocol.model import DecodeError, UnsupportedEncodingError
from .io import DEFAULT_ENCODING
from .json import unjson


class ValueFlag(IntEnum):
	"""The flags tag stored along a value, telling how it was encoded."""

	Compressed = 0
	Serialized = 4
	Binary = 5


class BytesTransform(ABC):
	"""An abstract bytes transform."""

	@abstractmethod
	def feed(self, chunk: bytes) -> bytes:
		"""Feeds bytes to the transform, returns the transformed bytes."""

	@abstractmethod
	def flush(self) -> bytes:
		"""Returns whatever the transform still holds."""


class ZlibDecoder(BytesTransform):
	"""Decodes a zlib stream"""

	__slots__ = ["decompressor"]

	def __init__(self) -> None:
		super().__init__()
		# Auto-detects zlib and gzip headers
		self.decompressor = zlib.decompressobj(wbits=zlib.MAX_WBITS | 32)

	def feed(self, chunk: bytes) -> bytes:
		return self.decompressor.decompress(chunk)

	def flush(self) -> bytes:
		return self.decompressor.flush()


class PrimitiveUnpickler(pickle.Unpickler):
	"""An unpickler that only builds builtin primitives (str, bytes,
	numbers, lists, tuples, dicts, sets). Any global lookup is refused, so
	a payload can't make us import or call anything."""

	def find_class(self, module: str, name: str) -> Any:
		raise DecodeError(f"Refusing to load global: {module}.{name}")


def uncompress(raw: bytes) -> bytes:
	decoder = ZlibDecoder()
	try:
		res = decoder.feed(raw) + decoder.flush()
	except zlib.error as e:
		raise DecodeError(f"Invalid compressed value: {e}") from e
	if not decoder.decompressor.eof:
		raise DecodeError("Truncated compressed value")
	return res


def deserialize(raw: bytes) -> Any:
	"""Values are JSON documents. Values stored as plain text by other
	clients are returned as text, and bytes that aren't text as bytes."""
	try:
		text = raw.decode(DEFAULT_ENCODING)
	except UnicodeDecodeError:
		return raw
	try:
		return unjson(text)
	except ValueError:
		return text


def unpickle(raw: bytes) -> Any:
	return PrimitiveUnpickler(io.BytesIO(raw)).load()


DECODERS: dict[ValueFlag, Callable[[bytes], Any]] = {
	ValueFlag.Compressed: lambda raw: deserialize(uncompress(raw)),
	ValueFlag.Serialized: deserialize,
	ValueFlag.Binary: unpickle,
}


def decode(raw: bytes, flags: int) -> Any:
	"""Decodes the raw value according to its flags tag."""
	try:
		flag = ValueFlag(flags)
	except ValueError:
		raise UnsupportedEncodingError(flags) from None
	try:
		return DECODERS[flag](raw)
	except DecodeError:
		raise
	except Exception as e:
		# Peer data may trip any decoder (nesting depth, pickle opcodes)
		raise DecodeError(
			f"Invalid {flag.name.lower()} value: [{e.__class__.__name__}] {e}"
		) from e


# EOF
