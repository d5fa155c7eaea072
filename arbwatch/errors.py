# arbwatch/errors.py


class ArbitrageError(Exception):
    """Base class for every error raised inside arbwatch."""


class VenueConnectionError(ArbitrageError):
    """
    Transport or handshake failure on a venue socket.
    Never fatal: the connector answers it with a scheduled reconnect.
    """
    def __init__(self, venue: str, message: str):
        super().__init__(f"[{venue}] {message}")
        self.venue = venue


class HeartbeatTimeout(VenueConnectionError):
    """No inbound traffic within the idle window. Handled exactly like a dropped connection."""


class ProtocolDecodeError(ArbitrageError):
    """A single frame could not be parsed. The frame is dropped, the connection stays open."""
    def __init__(self, venue: str, message: str, raw=None):
        super().__init__(f"[{venue}] {message}")
        self.venue = venue
        self.raw = raw


class StaleDataError(ArbitrageError):
    """Quotes exist but are too old (absolute expiry) or too far apart (dynamic skew bound)."""


class ConfigurationError(ArbitrageError):
    """Invalid settings. Only raised at startup, before any connector runs."""
