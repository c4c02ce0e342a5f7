import io

from memstream.utils import logging
from memstream.utils.logging import Logger, NullLogger, logged


def test_logger_writes_structured_lines(monkeypatch):
	stream = io.StringIO()
	monkeypatch.setattr(logging, "ERR", stream)
	monkeypatch.setattr(logging, "COLOR", False)
	Logger("cache").error("Connection failed", "Connection", Flags="Error|Reading")
	line = stream.getvalue()
	assert "[cache] Connection" in line
	assert "Connection failed" in line
	assert "Flags" in line and "Error|Reading" in line


def test_origin_defaults_to_context(monkeypatch):
	stream = io.StringIO()
	monkeypatch.setattr(logging, "ERR", stream)
	entry = logging.debug("Request sent", Keys=["a", "b"])
	assert entry.origin == "memstream"
	assert entry.level is logging.LogLevel.Debug
	assert "a,b" in stream.getvalue()


def test_null_logger_is_silent(monkeypatch):
	stream = io.StringIO()
	monkeypatch.setattr(logging, "ERR", stream)
	logger = NullLogger()
	assert logger.debug("nothing") is None
	assert logger.error("nothing", 1) is None
	assert stream.getvalue() == ""


def test_event(monkeypatch):
	stream = io.StringIO()
	monkeypatch.setattr(logging, "ERR", stream)
	entry = logging.event("Reconnect", 3, origin="pool", Address="127.0.0.1:11211")
	assert entry.type is logging.LogType.Event
	assert entry.value == 3
	line = stream.getvalue()
	assert "[pool] Reconnect" in line
	assert "127.0.0.1:11211" in line


def test_levels(monkeypatch):
	stream = io.StringIO()
	monkeypatch.setattr(logging, "ERR", stream)
	assert logging.info("Connected").level is logging.LogLevel.Info
	assert logging.warning("Slow response", Delay=1.5).level is logging.LogLevel.Warning
	assert "1.50" in stream.getvalue()
	assert logging.exception(ValueError("bad"), "Decoding") is not None
	assert "[ValueError] bad" in stream.getvalue()


def test_logged():
	assert logged(logging.debug)
	assert logged(Logger().debug)
	assert not logged(NullLogger().debug)
	assert not logged(NullLogger())


# EOF
