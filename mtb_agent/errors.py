"""Error types raised inside the agent."""


class AgentError(Exception):
    """Base class for every agent failure."""
    pass


class NetworkError(AgentError):
    """Remote host unreachable, timed out, or the transfer broke."""
    pass


class DecodeError(AgentError):
    """Command payload could not be decoded."""
    pass


class ValidationError(AgentError):
    """Command is missing a required parameter."""

    def __init__(self, key: str, message: str = ""):
        super().__init__(message or f"parameters is null or does not contain key \"{key}\"")
        self.key = key


class ActionError(AgentError):
    """An action ran but failed (capture, upload, file read, OS command)."""
    pass


class UpdateError(AgentError):
    """Any step of the update pipeline failed."""
    pass
