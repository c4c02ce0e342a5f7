from .model import (
	ABSENT,
	DISCONNECTED,
	ConnectionState,
	Failure,
	Marker,
	PendingRequest,
	ResponseRecord,
)  # NOQA: F401

# EOF
