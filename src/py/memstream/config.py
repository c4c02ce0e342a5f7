from os import getenv
from .utils.io import DEFAULT_ENCODING  # NOQA: F401

# The default memcached port, used when an address has no port
PORT: int = int(getenv("MEMSTREAM_PORT", 11211))

ADDRESS: str = getenv("MEMSTREAM_ADDRESS", f"127.0.0.1:{PORT}")

READSIZE: int = int(getenv("MEMSTREAM_READSIZE", 65_536))

# Memcached items are at most 1MB by default, this leaves room for larger
# slab settings and the response framing.
TRANSCRIPT_LIMIT: int = int(getenv("MEMSTREAM_TRANSCRIPT_LIMIT", 2 * 1024 * 1024 + 4096))

TIMEOUT: float = float(getenv("MEMSTREAM_TIMEOUT", 5.0))

LOG_PROTOCOL: bool = getenv("MEMSTREAM_LOG", "0") == "1"

# EOF
