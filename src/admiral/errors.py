"""
Exception hierarchy shared by the agent runtime and the API layer.
"""


class AdmiralError(Exception):
    """Base class for all Admiral errors."""


class ConnectionFailedError(AdmiralError):
    """A connection adapter could not reach the game server."""


class AgentError(AdmiralError):
    """An agent lifecycle operation could not be carried out."""


class ProfileNotFoundError(AgentError):
    def __init__(self, profile_id: str):
        super().__init__(f"Profile not found: {profile_id}")
        self.profile_id = profile_id


class NotConnectedError(AgentError):
    def __init__(self, profile_id: str):
        super().__init__(f"Agent not connected: {profile_id}")
        self.profile_id = profile_id


class ModelNotConfiguredError(AgentError):
    """The profile has no provider/model, or is set to manual."""


class LLMCallError(AdmiralError):
    """A model call failed after all retries."""


class AgentCancelledError(AdmiralError):
    """The agent's cancel token fired while an operation was in flight."""


class OperationTimeoutError(AdmiralError):
    def __init__(self, timeout: float):
        super().__init__(f"Operation timed out after {timeout:g}s")
        self.timeout = timeout
