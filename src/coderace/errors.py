"""Error taxonomy shared by the orchestration and ranking layers."""


class CoderaceError(Exception):
    """Base exception for coderace errors."""

    pass


class ValidationError(CoderaceError):
    """Malformed input or an operation not allowed in the current state."""

    pass


class NotFoundError(CoderaceError):
    """A referenced task, agent, execution or competition does not exist."""

    def __init__(self, kind: str, identifier: object):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} {identifier} not found")


class SessionError(CoderaceError):
    """An external tmux or process call failed."""

    pass


class AmbiguousOutcomeError(CoderaceError):
    """Neither execution finished, so no winner can be derived."""

    pass
