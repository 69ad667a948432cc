"""Exception types raised by the StablePay backend."""


class StablePayError(Exception):
    """Base class for errors the API reports back to the caller as a bad request."""


class InvalidLockPeriod(StablePayError, ValueError):
    """Raised when a lock period is not one of the offered options."""

    def __init__(self, months) -> None:
        self.months = months
        super().__init__(f"Unsupported lock period: {months!r} months")


class InvalidAddress(StablePayError, ValueError):
    """Raised for strings that are not 0x-prefixed 20-byte hex addresses."""

    def __init__(self, address) -> None:
        self.address = address
        super().__init__(f"Invalid address format: {address!r}")


class InvalidVerificationLevel(StablePayError, ValueError):
    """Raised when a KYC level is not basic, enhanced or premium."""

    def __init__(self, level) -> None:
        self.level = level
        super().__init__(f"Invalid verification level {level!r}. Must be basic, enhanced, or premium")


class ValidationError(StablePayError, ValueError):
    """Raised when a request body fails validation."""


class VendorError(StablePayError):
    """Raised when a single KYC vendor call fails."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class ConfigurationError(StablePayError):
    """Raised when required settings are missing."""
