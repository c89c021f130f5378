"""
campaign_engine/errors.py -- Exceptions raised across the engine.

Only persistence failures are meant to reach the caller of the pipeline.
The other exceptions are raised by optional collaborators (the completion
client and the LLM response parser) and are caught and logged by the
pipeline orchestrator.
"""


class PersistenceError(RuntimeError):
    """An analysis job or its items could not be saved."""


class SemanticParseError(ValueError):
    """The completion response could not be decoded at all."""


class CompletionError(RuntimeError):
    """The completion capability failed to produce a response."""


class CompletionUnavailable(CompletionError):
    """No completion backend is configured (offline mode)."""


class CompletionCancelled(CompletionError):
    """The caller's cancel event was set before the response finished."""
