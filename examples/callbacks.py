import asyncio
from typing import Any

from memstream import ABSENT, Failure, MemcacheClient, StatusFlag
from memstream.utils.logging import error, info, warning

"""
Callback Client Example

This demonstrates the callback API of the memstream client, the way an
event-driven application would use it.
Features shown:
- Connection with a one-shot connect callback
- Pipelined `get` and `getMany` requests on one connection
- Absent keys and failures delivered in place of values
- Error callback for connection failures

Usage:
    python callbacks.py [ADDRESS] [KEY...]
    python callbacks.py 127.0.0.1:11211 greeting counter

Populate the server first with:
    printf 'set greeting 4 0 7\\r\\n"hello"\\r\\n' | nc -q1 127.0.0.1 11211
"""


def on_result(key: str, value: Any, arg: Any) -> None:
	if isinstance(value, Failure):
		warning("Request failed", Key=key, Kind=value.kind, Message=value.message)
	elif value is ABSENT:
		info("Key is not stored", Key=key)
	else:
		info("Value received", Key=key, Value=repr(value))
	arg["remaining"] -= 1
	if arg["remaining"] == 0 and not arg["done"].done():
		arg["done"].set_result(None)


def on_error(flags: int, arg: Any) -> None:
	error("Connection failed", "Connection", Flags=repr(StatusFlag(flags)))
	if not arg["done"].done():
		arg["done"].set_result(None)


async def main(address: str, keys: list[str]) -> None:
	loop = asyncio.get_running_loop()
	state: dict[str, Any] = {"done": loop.create_future(), "remaining": 0}
	client = MemcacheClient(loop).setErrorCallback(on_error, state)

	def on_connect(flags: int, arg: Any) -> None:
		if not flags & StatusFlag.Connected:
			return
		info("Connected", Address=address)
		# The first key on its own, the rest in one command
		state["remaining"] = len(keys)
		client.get(keys[0], on_result, state)
		if len(keys) > 1:
			client.getMany(keys[1:], on_result, state)

	client.connect(address, on_connect)
	await state["done"]
	client.close()


if __name__ == "__main__":
	import sys

	address = sys.argv[1] if len(sys.argv) > 1 else "127.0.0.1:11211"
	keys = sys.argv[2:] or ["greeting", "counter"]
	asyncio.run(main(address, list(dict.fromkeys(keys))))

# EOF
