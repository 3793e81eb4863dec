"""Error types raised by the ingestion and retrieval components."""


class ExtractionError(ValueError):
    """Raised when text cannot be extracted from a document."""

    def __init__(self, message: str, reason: str = "corrupt"):
        super().__init__(message)
        self.reason = reason


class UnsupportedFormatError(ExtractionError):
    """Raised when no available converter can read the document format."""

    def __init__(self, message: str):
        super().__init__(message, reason="unsupported_format")


class EmbeddingServiceError(RuntimeError):
    """Raised when the embedding backend is unreachable or returns an unusable response."""

    pass


class StoreError(RuntimeError):
    """Raised when a document store operation fails and has been rolled back."""

    pass
