"""Error taxonomy shared by the engine and its collaborators.

    BackendError      — the reasoning backend could not be reached, timed out
                        or answered with an unusable envelope.
    ParseError        — the backend answered, but no JSON object in the text
                        matched the expected schema.
    TemplateError     — a prompt template is missing or failed to render.
    ConsistencyError  — a world-state mutation would break an invariant.

The first three are recoverable per character during intent collection and
memory update; during GM resolution they abort the turn.
"""


class SocialNpcError(Exception):
    """Base class for every error raised by social_npc."""


class BackendError(SocialNpcError):
    """Raised when the LLM backend cannot be reached or returns an error."""


class ParseError(SocialNpcError):
    """Raised when a backend response holds no valid structured payload."""


class TemplateError(SocialNpcError):
    """Raised when a Handlebars template fails to load, compile or render."""


class ConsistencyError(SocialNpcError):
    """Raised when a mutation would violate a world-state invariant."""
