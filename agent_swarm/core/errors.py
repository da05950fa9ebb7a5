"""
Exception taxonomy for the swarm core.
"""


class SwarmError(Exception):
    """Base class for all swarm errors"""

    pass


class SwarmValidationError(SwarmError, ValueError):
    """Raised when construction or invocation options are malformed"""

    pass


class AgentNotFoundError(SwarmError, LookupError):
    """Raised when a handover names an agent the registry does not know"""

    pass


class HandoverExecutionError(SwarmError):
    """Raised when a handover executor fails; aborts the whole invocation"""

    def __init__(self, action_name: str, cause: BaseException):
        super().__init__(f"Handover action '{action_name}' failed: {cause}")
        self.action_name = action_name
        self.cause = cause


class ModelInvocationError(SwarmError):
    """Raised (or carried on an error part) when the model client fails"""

    pass


class StreamClosedError(SwarmError):
    """Raised when attaching a source to a finished or cancelled stream"""

    pass
