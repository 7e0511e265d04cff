"""Custom exceptions for Pocker."""


class PockerError(Exception):
    """Base exception for Pocker errors."""

    pass


class SourceConfigError(PockerError):
    """Exception raised when a Docker source definition is unusable."""

    def __init__(self, source: str, reason: str) -> None:
        """
        Initialize SourceConfigError.

        Args:
            source: Name of the offending source
            reason: Why the source was rejected
        """
        self.source = source
        self.reason = reason
        super().__init__(f"Source '{source}' is invalid: {reason}")


class SourceNotFoundError(PockerError):
    """Exception raised when a source name is not configured."""

    def __init__(self, source: str) -> None:
        self.source = source
        super().__init__(f"Source not found: {source}")


class HostCollectionError(PockerError):
    """Exception raised when a Docker host cannot be queried."""

    CONNECTION_REFUSED = "connection-refused"
    DNS_FAILURE = "dns-failure"
    TIMEOUT = "timeout"
    RESET = "reset"
    OTHER = "other"

    DESCRIPTIONS = {
        CONNECTION_REFUSED: "connection refused",
        DNS_FAILURE: "host name could not be resolved",
        TIMEOUT: "timed out",
        RESET: "connection reset",
        OTHER: "request failed",
    }

    def __init__(
        self,
        source: str,
        failure: str,
        operation: str = "listContainers",
        original_error: Exception | None = None,
    ) -> None:
        """
        Initialize HostCollectionError.

        Args:
            source: Name of the source that failed
            failure: Failure classification (one of the class constants)
            operation: Runtime API call that failed
            original_error: Underlying transport exception
        """
        self.source = source
        self.failure = failure
        self.operation = operation
        self.original_error = original_error
        description = self.DESCRIPTIONS.get(failure, self.DESCRIPTIONS[self.OTHER])
        super().__init__(f"Docker host '{source}' unreachable ({operation}): {description}")


class RegistryError(PockerError):
    """Exception raised when a container registry lookup fails."""

    def __init__(self, registry: str, message: str) -> None:
        """
        Initialize RegistryError.

        Args:
            registry: Registry host that failed
            message: Error message
        """
        self.registry = registry
        super().__init__(f"{registry}: {message}")


class MetadataError(PockerError):
    """Exception raised when a metadata provider returns an unusable answer."""

    def __init__(self, provider: str, message: str) -> None:
        """
        Initialize MetadataError.

        Args:
            provider: Provider tier name
            message: Error message
        """
        self.provider = provider
        super().__init__(f"{provider}: {message}")
