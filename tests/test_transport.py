import asyncio
import json
import socket
import sys
import zlib
from pathlib import Path
from typing import Any

import pytest

from memstream.client import MemcacheClient
from memstream.protocol.model import (
	ABSENT,
	ConnectionState,
	NotConnectedError,
	RequestFailed,
)
from memstream.transport import BufferEvent, Endpoint, StatusFlag


# --
# These tests run the client against a tiny memcached stand-in served by
# asyncio on the loopback interface.


class FakeMemcached:
	def __init__(self, values: dict[str, tuple[int, bytes]]) -> None:
		self.values = values
		self.commands: list[bytes] = []
		self.server: asyncio.AbstractServer | None = None
		self.writers: list[asyncio.StreamWriter] = []

	async def handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
		self.writers.append(writer)
		try:
			while line := await reader.readline():
				line = line.rstrip(b"\r\n")
				self.commands.append(line)
				name, *keys = line.decode().split(" ")
				if name != "get":
					writer.write(b"ERROR\r\n")
					continue
				for key in keys:
					if key in self.values:
						flags, data = self.values[key]
						writer.write(b"VALUE %s %d %d\r\n%s\r\n" % (key.encode(), flags, len(data), data))
				writer.write(b"END\r\n")
				await writer.drain()
		except ConnectionError:
			pass
		finally:
			writer.close()

	async def start(self) -> str:
		self.server = await asyncio.start_server(self.handle, "127.0.0.1", 0)
		port = self.server.sockets[0].getsockname()[1]
		return f"127.0.0.1:{port}"

	async def startUnix(self, path: Path) -> str:
		self.server = await asyncio.start_unix_server(self.handle, str(path))
		return str(path)

	def disconnect(self) -> None:
		for writer in self.writers:
			writer.close()

	async def stop(self) -> None:
		if self.server:
			self.disconnect()
			self.server.close()
			await self.server.wait_closed()


VALUES: dict[str, tuple[int, bytes]] = {
	"greeting": (4, b"hello"),
	"profile": (0, zlib.compress(json.dumps({"name": "Ada", "langs": ["en", "fr"]}).encode())),
	"number": (4, b"42"),
}


def test_endpoint_parse():
	assert Endpoint.Parse("127.0.0.1:11211") == Endpoint("127.0.0.1", 11211)
	assert Endpoint.Parse("cache", 11311) == Endpoint("cache", 11311)
	assert Endpoint.Parse("[::1]:11212") == Endpoint("::1", 11212)
	assert Endpoint.Parse("[::1]", 11211) == Endpoint("::1", 11211)
	assert Endpoint.Parse("/tmp/memcached.sock") == Endpoint(path="/tmp/memcached.sock")
	with pytest.raises(ValueError):
		Endpoint.Parse("[::1:11211")


def test_fetch_values():
	async def main() -> None:
		server = FakeMemcached(VALUES)
		address = await server.start()
		client = MemcacheClient()
		try:
			flags = await asyncio.wait_for(client.open(address), 5)
			assert flags & StatusFlag.Connected
			assert client.state is ConnectionState.Connected
			assert isinstance(client.transport, BufferEvent) and client.transport.isConnected
			assert await asyncio.wait_for(client.fetch("greeting"), 5) == "hello"
			assert await asyncio.wait_for(client.fetch("profile"), 5) == {
				"name": "Ada",
				"langs": ["en", "fr"],
			}
			assert await asyncio.wait_for(client.fetch("missing"), 5) is ABSENT
		finally:
			client.close()
			await server.stop()
		assert server.commands == [b"get greeting", b"get profile", b"get missing"]

	asyncio.run(main())


def test_pipelined_callbacks():
	async def main() -> None:
		server = FakeMemcached(VALUES)
		address = await server.start()
		client = MemcacheClient()
		done = asyncio.get_running_loop().create_future()
		calls: list[tuple[str, Any, Any]] = []
		keys = ["number", "missing", "greeting", "number"]

		def onResult(key: str, value: Any, arg: Any) -> None:
			calls.append((key, value, arg))
			if len(calls) == len(keys):
				done.set_result(True)

		try:
			await asyncio.wait_for(client.open(address), 5)
			for i, key in enumerate(keys):
				client.get(key, onResult, i)
			await asyncio.wait_for(done, 5)
		finally:
			client.close()
			await server.stop()
		assert calls == [
			("number", 42, 0),
			("missing", ABSENT, 1),
			("greeting", "hello", 2),
			("number", 42, 3),
		]

	asyncio.run(main())


@pytest.mark.skipif(sys.platform == "win32", reason="UNIX sockets")
def test_unix_socket(tmp_path: Path):
	async def main() -> None:
		server = FakeMemcached(VALUES)
		address = await server.startUnix(tmp_path / "memcached.sock")
		client = MemcacheClient()
		try:
			await asyncio.wait_for(client.open(address), 5)
			assert await asyncio.wait_for(client.fetch("greeting"), 5) == "hello"
		finally:
			client.close()
			await server.stop()

	asyncio.run(main())


def test_connection_refused_then_retry():
	async def main() -> None:
		# A port nobody listens on
		with socket.socket() as s:
			s.bind(("127.0.0.1", 0))
			port = s.getsockname()[1]
		client = MemcacheClient()
		errors: list[int] = []
		client.setErrorCallback(lambda flags, arg: errors.append(flags))
		first = client.transport
		with pytest.raises(ConnectionError):
			await asyncio.wait_for(client.open(f"127.0.0.1:{port}"), 5)
		assert client.state is ConnectionState.Errored
		assert len(errors) == 1
		assert errors[0] & StatusFlag.Error
		assert client.transport is not first
		assert isinstance(client.transport, BufferEvent)
		# The same client connects once a server is there
		server = FakeMemcached(VALUES)
		address = await server.start()
		try:
			await asyncio.wait_for(client.open(address), 5)
			assert await asyncio.wait_for(client.fetch("number"), 5) == 42
		finally:
			client.close()
			await server.stop()

	asyncio.run(main())


def test_malformed_address_then_retry():
	async def main() -> None:
		server = FakeMemcached(VALUES)
		address = await server.start()
		client = MemcacheClient()
		try:
			with pytest.raises(ValueError):
				client.connect("localhost:notaport")
			assert client.state is ConnectionState.Disconnected
			await asyncio.wait_for(client.open(address), 5)
			assert await asyncio.wait_for(client.fetch("greeting"), 5) == "hello"
		finally:
			client.close()
			await server.stop()

	asyncio.run(main())


def test_server_close_fails_pending():
	async def main() -> None:
		server = FakeMemcached(VALUES)
		address = await server.start()
		client = MemcacheClient()
		try:
			await asyncio.wait_for(client.open(address), 5)
			assert await asyncio.wait_for(client.fetch("number"), 5) == 42
			server.disconnect()
			with pytest.raises((RequestFailed, NotConnectedError)) as e:
				# The request is either refused when the close was already
				# noticed, or failed once it is.
				await asyncio.wait_for(client.fetch("greeting"), 5)
			if isinstance(e.value, RequestFailed):
				assert e.value.failure.kind == "Disconnected"
			assert client.state in (ConnectionState.Disconnected, ConnectionState.Errored)
		finally:
			client.close()
			await server.stop()

	asyncio.run(main())


def test_writes_before_connection_are_buffered():
	async def main() -> None:
		server = FakeMemcached(VALUES)
		address = await server.start()
		loop = asyncio.get_running_loop()
		received = loop.create_future()
		statuses: list[int] = []

		def onRead(event: Any) -> None:
			data = event.input.drain()
			if not received.done():
				received.set_result(data)

		event = BufferEvent(
			loop, onRead=onRead, onStatus=lambda event, flags: statuses.append(flags)
		)
		try:
			event.connect(address)
			event.output.add(b"get greeting\r\n")
			data = await asyncio.wait_for(received, 5)
			assert data.startswith(b"VALUE greeting 4 5\r\nhello\r\n")
			assert statuses == [StatusFlag.Connected]
		finally:
			event.free()
			await server.stop()

	asyncio.run(main())


# EOF
