from typing import Any, TypeAlias, cast
import json as basejson


TJSON: TypeAlias = None | int | float | bool | str | list[Any] | dict[str, Any]


def unjson(value: bytes | str) -> TJSON:
	"""Parses a JSON document, raising `ValueError` when it isn't one."""
	return cast(TJSON, basejson.loads(value))


# EOF
