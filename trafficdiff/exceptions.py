"""Custom exceptions for TrafficDiff engine."""


class TrafficDiffError(Exception):
    """Base exception for TrafficDiff errors."""
    pass


class ValidationError(TrafficDiffError):
    """Raised when input validation fails."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class SpecificationError(TrafficDiffError):
    """Raised when the specification holds a dangling reference."""
    def __init__(self, message: str, reference: str = None):
        super().__init__(message)
        self.message = message
        self.reference = reference


class CommandError(SpecificationError):
    """Raised when a specification command cannot be applied."""
    def __init__(self, command, message: str):
        super().__init__(f"Cannot apply {type(command).__name__}: {message}")
        self.command = command
        self.reason = message


class SchemaParseError(TrafficDiffError):
    """Raised when an OpenAPI schema cannot be parsed."""
    def __init__(self, message: str, reason: str = None):
        super().__init__(message)
        self.message = message
        self.reason = reason


class ExternalRefError(TrafficDiffError):
    """Raised when an external $ref is encountered."""
    def __init__(self, ref: str):
        super().__init__(f"External $ref not allowed: {ref}")
        self.ref = ref


class MaxDepthExceededError(TrafficDiffError):
    """Raised when maximum recursion depth is exceeded."""
    def __init__(self, depth: int, path: str):
        super().__init__(f"Maximum depth ({depth}) exceeded at path: {path}")
        self.depth = depth
        self.path = path


class LoadError(TrafficDiffError):
    """Raised when the specification or the capture session cannot be loaded."""
    def __init__(self, source: str, cause: Exception):
        super().__init__(f"Failed to load {source}: {cause}")
        self.source = source
        self.cause = cause


class SessionStateError(TrafficDiffError):
    """Raised when a review action is not allowed in the current state."""
    def __init__(self, state, action: str):
        state_name = getattr(state, "value", state)
        super().__init__(f"Cannot {action} while session is {state_name}")
        self.state = state
        self.action = action


class CommitError(TrafficDiffError):
    """Raised when a commit batch could not be applied or saved."""
    def __init__(self, batch_id: str, cause: Exception):
        super().__init__(f"Commit {batch_id} abandoned: {cause}")
        self.batch_id = batch_id
        self.cause = cause
