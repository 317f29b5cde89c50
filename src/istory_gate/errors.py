"""Error taxonomy for the authorization gate."""


class GateError(Exception):
    """Base class for gate errors."""


class InvalidInput(GateError):
    """Malformed claim, hash or secret. Never retried."""


class TransientError(GateError):
    """RPC endpoint unreachable or failing. Retry on the next endpoint."""


class ConfigurationError(GateError):
    """Unknown network or mode, or an invalid deployment configuration."""
