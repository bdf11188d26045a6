"""Application exception classes."""


class ConfigError(Exception):
    """Raised when configuration is invalid or incomplete."""


class JournalError(Exception):
    """Raised when writing to journal files fails."""


class StoreError(Exception):
    """Raised when the forecast database cannot be opened or written."""


class WeatherProviderError(Exception):
    """Raised when weather provider requests or normalization fail."""

    def __init__(self, message: str, *, provider: str | None = None) -> None:
        super().__init__(message)
        self.provider = provider


class ConfigMissingError(WeatherProviderError):
    """Raised when a provider has no API key configured."""


class QuotaExceededError(WeatherProviderError):
    """Raised when a provider's daily call budget is spent."""


class TransportError(WeatherProviderError):
    """Raised for network failures, timeouts and HTTP error statuses."""

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, provider=provider)
        self.status_code = status_code


class ProviderDataError(WeatherProviderError):
    """Raised when a payload is malformed or carries a provider error code."""


class UnsupportedCapabilityError(WeatherProviderError):
    """Raised when a provider is asked for data it does not offer."""


class CityUnresolvedError(Exception):
    """Raised when a location cannot be mapped to a single known city."""

    def __init__(self, message: str, *, name: str | None = None) -> None:
        super().__init__(message)
        self.name = name


class InvalidSelectionError(CityUnresolvedError):
    """Raised when a disambiguation answer is not a valid list index."""


class InputError(Exception):
    """Raised when a command-line argument is not one of the accepted values."""

    def __init__(self, field: str, value: str, valid: str) -> None:
        super().__init__(f"Sorry, '{value}' is not a valid option for the '{field}' field.")
        self.field = field
        self.value = value
        self.valid = valid
