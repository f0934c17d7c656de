"""
Exception classes for data lifecycle orchestration.

Configuration errors are raised immediately and are never retried:
- UnsupportedTopologyError: sharded and replicated NoSQL requested together
- UnsupportedEngineError: relational engine kind has no known profile

StageLogError is a transient infrastructure error. Stages convert it into
a failed result instead of letting it escape to the operator.
"""


class DataPrepError(Exception):
    """Base class for all data preparation errors."""


class ConfigurationError(DataPrepError):
    """Raised when the deployment shape cannot be handled as configured."""


class UnsupportedTopologyError(ConfigurationError):
    """
    Raised when a NoSQL topology combination is not supported.

    Attributes:
        num_shards: Requested shard count
        num_replicas: Requested replica count
    """

    def __init__(self, num_shards: int, num_replicas: int) -> None:
        self.num_shards = num_shards
        self.num_replicas = num_replicas
        super().__init__(
            f"Loading data in sharded and replicated NoSQL is not supported "
            f"(shards={num_shards}, replicas={num_replicas})"
        )


class UnsupportedEngineError(ConfigurationError):
    """
    Raised when the relational engine kind is unknown.

    Attributes:
        engine: The engine kind that was requested
    """

    def __init__(self, engine: str) -> None:
        self.engine = engine
        super().__init__(
            f"The database must be \"mysql\" or \"postgresql\", got \"{engine}\""
        )


class StageLogError(DataPrepError):
    """
    Raised when a stage log file cannot be opened.

    Attributes:
        path: The log path that failed to open
    """

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        super().__init__(f"Error opening {path}: {reason}")
