"""Custom exceptions for Email Aggregator."""


class EmailAggregatorError(Exception):
    """Base exception for all Email Aggregator errors."""


class ProviderError(EmailAggregatorError):
    """Base exception for mail provider failures."""


class AuthError(ProviderError):
    """The provider rejected the bearer credential (expired or invalid)."""


class TransientError(ProviderError):
    """Rate limiting, provider unavailability or timeout. Safe to retry."""


class FetchError(ProviderError):
    """Malformed provider response or any other unexpected provider failure."""


class StoreError(EmailAggregatorError):
    """A persisted-store read or write failed."""


class InvalidRequestError(EmailAggregatorError):
    """The client supplied an invalid folder, page or page size."""


class OllamaConnectionError(EmailAggregatorError):
    """Exception raised when unable to connect to Ollama."""


class OllamaInferenceError(EmailAggregatorError):
    """Exception raised when Ollama inference fails."""


class ConfigurationError(EmailAggregatorError):
    """Exception raised for configuration related errors."""
