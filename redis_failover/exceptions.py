"""Error taxonomy for the Redis failover operator."""

from typing import Optional


class RedisFailoverError(Exception):
    """Base class for every error raised during a reconciliation pass."""

    pass


class ValidationError(RedisFailoverError):
    """Raised when a RedisFailover spec fails semantic checks."""

    pass


class ObjectStoreError(RedisFailoverError):
    """Raised when listing, creating or patching managed objects fails."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class NodeError(RedisFailoverError):
    """Base class for errors talking to a single Redis or Sentinel node."""

    def __init__(self, ip: str, message: str, role: str = "redis"):
        super().__init__(f"{role} node {ip}: {message}")
        self.ip = ip
        self.role = role


class NodeUnreachable(NodeError):
    """The node did not answer within its bounded timeout."""

    pass


class ProtocolRejected(NodeError):
    """The node answered but refused the command."""

    pass


class StatusWriteError(RedisFailoverError):
    """Raised when persisting the observed status fails."""

    pass
