import argparse
import asyncio
import sys
from typing import Any

from . import config
from .client import MemcacheClient
from .protocol.model import ABSENT, Failure, MemcacheError
from .utils.logging import Logger, error, info


async def run(address: str, keys: list[str], timeout: float, verbose: bool) -> int:
	"""Fetches the keys in one pipeline, printing `key=value` lines.
	Returns the process exit code."""
	keys = list(dict.fromkeys(keys))
	client = MemcacheClient(logger=Logger() if verbose else None)
	try:
		await asyncio.wait_for(client.open(address), timeout=timeout)
	except (ConnectionError, asyncio.TimeoutError) as e:
		error("Could not connect", "Connection", Address=address, Reason=str(e))
		client.close()
		return 1
	verbose and info("Connected", Address=address)
	loop = asyncio.get_running_loop()
	done: asyncio.Future[None] = loop.create_future()
	results: dict[str, Any] = {}

	def onResult(key: str, value: Any, arg: Any) -> None:
		results[key] = value
		if len(results) == len(keys) and not done.done():
			done.set_result(None)

	status: int = 0
	try:
		client.getMany(keys, onResult)
		await asyncio.wait_for(done, timeout=timeout)
	except asyncio.TimeoutError:
		error("Timed out waiting for values", "Timeout", Received=len(results))
		status = 1
	except MemcacheError as e:
		error("Request failed", "Request", Reason=str(e))
		status = 1
	finally:
		client.close()
	for key in keys:
		value = results.get(key)
		if key not in results or isinstance(value, Failure):
			sys.stdout.write(f"{key} ✗ {value.kind if isinstance(value, Failure) else 'Timeout'}\n")
			status = 1
		elif value is ABSENT:
			sys.stdout.write(f"{key} ◌\n")
		else:
			sys.stdout.write(f"{key}={value!r}\n")
	return status


def main(args: list[str] | None = None) -> int:
	parser = argparse.ArgumentParser(
		prog="memstream", description="Fetches values from a memcache server"
	)
	parser.add_argument("keys", metavar="KEY", nargs="+", help="Keys to fetch")
	parser.add_argument(
		"-a",
		"--address",
		default=config.ADDRESS,
		help=f"Server address, host:port or socket path (default: {config.ADDRESS})",
	)
	parser.add_argument(
		"-t", "--timeout", type=float, default=config.TIMEOUT, help="Timeout in seconds"
	)
	parser.add_argument(
		"-v", "--verbose", action="store_true", help="Logs the protocol exchange"
	)
	options = parser.parse_args(args)
	return asyncio.run(
		run(options.address, options.keys, options.timeout, options.verbose)
	)


if __name__ == "__main__":
	sys.exit(main())

# EOF
