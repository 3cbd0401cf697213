"""
Company index exceptions.
"""


class CompanyIndexError(Exception):
    """Base exception for company index errors."""

    def __init__(self, message: str, code: int | None = None):
        self.message = message
        self.code = code
        super().__init__(self.message)


class ValidationError(CompanyIndexError):
    """Raised when a company code or an input shape is invalid."""

    def __init__(self, message: str):
        super().__init__(message, code=400)


class IndexNotFoundError(CompanyIndexError):
    """Raised when a required index artifact is absent."""

    def __init__(self, company_code: str, message: str | None = None):
        self.company_code = company_code
        super().__init__(
            message or f"No index found for company '{company_code}'",
            code=404,
        )


class IndexCorruptedError(CompanyIndexError):
    """Raised when an index artifact exists but fails validation."""

    def __init__(self, artifact: str, message: str, company_code: str | None = None):
        self.artifact = artifact
        self.detail = message
        self.company_code = company_code
        prefix = f"Index for '{company_code}'" if company_code else "Index"
        super().__init__(f"{prefix} corrupted ({artifact}): {message}", code=422)


class SerializationError(IndexCorruptedError):
    """Raised when caller data cannot be turned into a valid artifact."""

    def __init__(self, artifact: str, message: str, company_code: str | None = None):
        super().__init__(artifact, message, company_code=company_code)
        self.message = f"Cannot serialize {artifact}: {message}"
        self.args = (self.message,)


class StorageError(CompanyIndexError):
    """Raised when the underlying persistence layer fails."""

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        super().__init__(message, code=500)


class ArtifactNotFoundError(CompanyIndexError):
    """Raised by storage adapters when a path does not exist."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"No such artifact: {path}", code=404)


class PipelineError(CompanyIndexError):
    """Raised when the fetch/chunk/embed pipeline cannot produce an index."""

    def __init__(self, message: str, company_code: str | None = None):
        self.company_code = company_code
        super().__init__(message, code=502)
