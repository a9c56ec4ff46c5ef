class AssessorError(Exception):
    """Base exception for all assessor related errors."""

    pass


class AllocationError(AssessorError, ValueError):
    """Raised when an allocation cannot be represented (e.g., layer outside 1-5)."""

    pass


class ValidationError(AssessorError):
    """Raised when an assessment request is rejected at the service boundary."""

    pass
