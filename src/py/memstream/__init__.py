from .client import MemcacheClient  # NOQA: F401
from .transport import BufferEvent, StatusFlag, Transport  # NOQA: F401
from .protocol.model import (
	ABSENT,
	DISCONNECTED,
	ConnectionState,
	Failure,
	MemcacheError,
	NotConnectedError,
	RequestFailed,
	UnsupportedEncodingError,
)  # NOQA: F401


# EOF
