"""
Domain Exceptions

Errors raised by the engine at its public boundary. Collaborator failures
(tools, plan runner, session store) are never raised through these types;
they are recorded into the execution history instead.
"""


class DraftforceError(Exception):
    """Base class for all Draftforce errors."""


class EngineStateError(DraftforceError):
    """Operation is not valid in the engine's current stage."""

    def __init__(self, message: str, stage: str):
        super().__init__(message)
        self.stage = stage


class EngineBusyError(EngineStateError):
    """A new task was submitted while the engine waits for a human answer."""


class NoPendingInteractionError(EngineStateError):
    """An answer was submitted but nothing is awaiting one."""


class ConfigurationError(DraftforceError):
    """Profile or settings are invalid."""
