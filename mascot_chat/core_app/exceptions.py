class ChatAppError(Exception):
    """Base exception for the chat backend."""


class ConfigError(ChatAppError):
    """Missing or malformed environment configuration."""


class ConflictError(ChatAppError):
    """A record with the same unique key already exists."""


class NotFoundError(ChatAppError):
    """The requested record does not exist."""


class UnauthorizedError(ChatAppError):
    """Credentials or session are missing or invalid."""


class StorageError(ChatAppError):
    """The persistence layer failed."""


class ProviderError(ChatAppError):
    """The LLM provider call failed for an unclassified reason."""


class ProviderTimeoutError(ProviderError):
    """The LLM provider did not answer in time."""


class ProviderRateLimitError(ProviderError):
    """The LLM provider rejected the call with 429."""


class ProviderResponseError(ProviderError):
    """The LLM provider answered with a body we could not read."""


class PipelineError(ChatAppError):
    """
    The message pipeline could not finish.

    An apology message has already been written to the log when this is raised.
    """
