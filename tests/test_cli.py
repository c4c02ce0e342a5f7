import asyncio
import socket

from memstream.__main__ import run

from test_transport import VALUES, FakeMemcached


def test_fetch_keys(capsys):
	async def main() -> int:
		server = FakeMemcached(VALUES)
		address = await server.start()
		try:
			return await run(address, ["greeting", "missing", "number", "greeting"], 5.0, False)
		finally:
			await server.stop()

	assert asyncio.run(main()) == 0
	out = capsys.readouterr().out.splitlines()
	assert out == ["greeting='hello'", "missing ◌", "number=42"]


def test_connection_failure(capsys):
	with socket.socket() as s:
		s.bind(("127.0.0.1", 0))
		port = s.getsockname()[1]
	assert asyncio.run(run(f"127.0.0.1:{port}", ["greeting"], 5.0, False)) == 1
	assert capsys.readouterr().out == ""


# EOF
