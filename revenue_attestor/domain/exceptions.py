"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class ProviderError(DomainException):
    """Failure attributable to a specific commerce/payment provider"""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message


class ProviderFetchError(ProviderError):
    """Provider unreachable, rate limited, or returned a non-success status"""

    def __init__(self, provider: str, message: str, status_code: int | None = None):
        super().__init__(provider, message)
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.status_code is None or self.status_code == 429 or self.status_code >= 500

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429


class PaginationLoopError(ProviderFetchError):
    """Provider handed back a continuation token it already issued"""

    pass


class ProviderPayloadError(ProviderError):
    """Provider responded successfully but the body is not what we expect"""

    pass


class NormalizationError(DomainException):
    """A raw record is missing fields required for the canonical shape"""

    def __init__(self, provider: str, record_id: str | None, message: str):
        super().__init__(f"{provider} record {record_id or '<unknown>'}: {message}")
        self.provider = provider
        self.record_id = record_id


class InvalidKPIInputError(DomainException):
    """KPI window parameters are not usable (bad timezone, non-positive window)"""

    pass


class AttestationValidationError(DomainException):
    """Attestation content cannot be serialized canonically"""

    pass


class UnknownProviderError(DomainException):
    """Requested provider has no adapter, or its connection details are incomplete"""

    pass
