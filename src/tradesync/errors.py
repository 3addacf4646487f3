"""Custom exceptions for tradesync."""


class TradesyncError(Exception):
    """Base exception for all tradesync errors."""

    pass


class EntityNotFoundError(TradesyncError):
    """Raised when an entity ID doesn't exist in the local store."""

    def __init__(self, kind: str, entity_id: int):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind.capitalize()} not found: {entity_id}")


class EntityValidationError(TradesyncError):
    """Raised when an entity has an invalid shape."""

    def __init__(self, kind: str, reason: str):
        self.kind = kind
        self.reason = reason
        super().__init__(f"Invalid {kind}: {reason}")


class InvalidStatusTransitionError(TradesyncError):
    """Raised when an order status change would move backwards."""

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot change order status from '{current}' to '{requested}'")


class InvalidSchemaVersionError(TradesyncError):
    """Raised when a persisted snapshot has an unsupported schema version."""

    def __init__(self, found: int, supported: int):
        self.found = found
        self.supported = supported
        super().__init__(
            f"Unsupported schema version {found}. This tool supports version {supported}."
        )


class StateCorruptedError(TradesyncError):
    """Raised when a persisted snapshot cannot be parsed."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Stored state at {path} is unreadable: {reason}")


class ConfigurationError(TradesyncError):
    """Raised when a configuration value is invalid."""

    def __init__(self, name: str, value: str, reason: str | None = None):
        self.name = name
        self.value = value
        msg = f"Invalid value for {name}: {value!r}"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)


class RemoteError(TradesyncError):
    """Raised by remote data services when a call fails."""

    def __init__(self, operation: str, table: str, detail: str):
        self.operation = operation
        self.table = table
        self.detail = detail
        super().__init__(f"Remote {operation} on {table} failed: {detail}")
