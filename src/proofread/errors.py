"""Typed failures raised inside the engine and reported by the service."""


class ProofreadError(Exception):
    """Base class for every engine failure."""


class ConfigurationError(ProofreadError):
    """No encoder model has been configured."""


class LoadError(ProofreadError):
    """Copying an artifact or constructing a session failed."""


class TokenizationDegraded(ProofreadError):
    """Vocabulary unavailable; the character codec is used instead.

    Raised only while loading a vocabulary and absorbed by the loader.
    """


class InferenceError(ProofreadError):
    """Encoder or decoder execution failed, or produced malformed output."""


class Cancelled(ProofreadError):
    """The caller cancelled the request before generation finished."""
