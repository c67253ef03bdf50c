"""Error types raised by prose-polisher."""

from enum import Enum


class ErrorType(Enum):
    INVALID_PATTERN = "INVALID_PATTERN"
    MALFORMED_RULE = "MALFORMED_RULE"
    MISSING_DEPENDENCY = "MISSING_DEPENDENCY"
    GENERATION_FAILED = "GENERATION_FAILED"


class ProsePolisherError(Exception):
    """Base class for all prose-polisher errors."""

    def __init__(self, message: str, error_type: ErrorType):
        self.message = message
        self.error_type = error_type
        super().__init__(self.message)


class InvalidPatternError(ProsePolisherError):
    """A rule's find regex does not compile."""

    def __init__(self, pattern: str, reason: str):
        self.pattern = pattern
        super().__init__(f"Invalid regex {pattern!r}: {reason}", ErrorType.INVALID_PATTERN)


class MalformedRuleError(ProsePolisherError):
    """A rule submission was rejected by validation."""

    def __init__(self, message: str):
        super().__init__(message, ErrorType.MALFORMED_RULE)


class MissingDependencyError(ProsePolisherError):
    """A required collaborator was not available at call time."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Missing dependency: {name}", ErrorType.MISSING_DEPENDENCY)


class GenerationError(ProsePolisherError):
    """The external rule generator failed or returned unusable output."""

    def __init__(self, message: str):
        super().__init__(message, ErrorType.GENERATION_FAILED)
