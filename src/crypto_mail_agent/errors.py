"""Error taxonomy shared by the wallet engine, operation registry and dispatcher.

Every :class:`WalletError` carries a stable ``code`` so that failures can be
reported back to the completion service (and to users) as structured
``{"success": False, "message": ..., "error": code}`` results instead of
crashing the request.
"""

from __future__ import annotations


class WalletError(Exception):
    """Base class for all domain-level failures."""

    code = "wallet_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_result(self) -> dict:
        return {"success": False, "message": self.message, "error": self.code}


# ---------------------------------------------------------------------------
# Bad or missing input
# ---------------------------------------------------------------------------


class ValidationError(WalletError):
    code = "validation_error"


class MissingParameter(ValidationError):
    code = "missing_parameter"


class InvalidArguments(ValidationError):
    code = "invalid_arguments"


class InvalidRecipient(ValidationError):
    code = "invalid_recipient"


class InvalidAmount(ValidationError):
    code = "invalid_amount"


class UnknownOperation(ValidationError):
    code = "unknown_operation"


class WalletExists(ValidationError):
    code = "wallet_exists"

    def __init__(self, message: str, address: str) -> None:
        super().__init__(message)
        self.address = address

    def to_result(self) -> dict:
        result = super().to_result()
        result["address"] = self.address
        return result


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


class NotFoundError(WalletError):
    code = "not_found"


class NoWallet(NotFoundError):
    code = "no_wallet"


class UnknownRecipient(NotFoundError):
    code = "unknown_recipient"


class InsufficientFunds(WalletError):
    code = "insufficient_funds"


# ---------------------------------------------------------------------------
# External providers (chain RPC, completion service)
# ---------------------------------------------------------------------------


class ProviderError(WalletError):
    code = "provider_error"


class ProviderTimeout(ProviderError):
    code = "provider_timeout"


class BroadcastFailed(ProviderError):
    code = "broadcast_failed"


# ---------------------------------------------------------------------------
# Process-level
# ---------------------------------------------------------------------------


class ConfigurationError(Exception):
    """Raised once at startup when required settings are missing or invalid."""


class ExhaustedRounds(Exception):
    """The dispatch loop hit its round bound without a final answer."""

    def __init__(self, rounds: int) -> None:
        super().__init__(f"No final answer after {rounds} dispatch rounds")
        self.rounds = rounds
