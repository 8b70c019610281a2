"""
Exception types shared by the dynger modules.

Verification failures are not exceptions: a bad token is reported as an
unverified result. Everything below is raised for real failures.
"""


class DyngerError(Exception):
    """Base class for all dynger errors."""


class RandomnessUnavailable(DyngerError):
    """The secure random source could not be read."""


class SecretDecodeError(DyngerError, ValueError):
    """A master secret or password token is not valid unpadded base64url."""


class SecretNotInitialized(DyngerError):
    """The master secret is missing or unusable."""


class ConfigError(DyngerError):
    """Required configuration is missing or invalid."""


class MalformedName(DyngerError, ValueError):
    """A host name has no parent domain to update the record under."""


class ProviderUnavailable(DyngerError):
    """
    The DNS provider could not be reached or returned an unreadable response.

    Attributes:
        operation: Provider call that failed ("list", "create" or "delete")
    """

    def __init__(self, message: str, operation: str = "") -> None:
        super().__init__(message)
        self.operation = operation


class ProviderError(DyngerError):
    """
    The DNS provider answered with an error payload.

    Attributes:
        code: Provider error code
        message: Provider error message
        operation: Provider call that failed ("list", "create" or "delete")
    """

    def __init__(self, code: str, message: str, operation: str = "") -> None:
        self.code = code
        self.message = message
        self.operation = operation
        super().__init__(str(self))

    def __str__(self) -> str:
        if not self.code:
            return "Provider API error: no error code"
        return f"Provider API error code: {self.code}, message: {self.message}"
