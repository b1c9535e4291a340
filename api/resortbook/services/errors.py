"""Booking domain errors.

Every error carries a short machine-readable `rule` and a human `message`.
Routes never catch these individually: the handler registered in main.py maps
each family to its HTTP status.
"""


class BookingError(Exception):
    """Base class for all booking workflow failures."""

    status_code = 400

    def __init__(self, rule: str, message: str):
        self.rule = rule
        self.message = message
        super().__init__(message)

    def to_detail(self) -> dict:
        return {"rule": self.rule, "message": self.message}


class ValidationError(BookingError):
    """Malformed or out-of-range input. Not retryable as-is."""

    status_code = 422


class DateError(ValidationError):
    pass


class AgeRestrictionError(ValidationError):
    def __init__(self, service_name: str, guest_name: str, message: str):
        self.service_name = service_name
        self.guest_name = guest_name
        super().__init__("age_restriction", message)


class ConflictError(BookingError):
    """Overlap, capacity or reuse conflict. Retry with different parameters."""

    status_code = 409

    def __init__(self, rule: str, message: str, conflicts: list[dict] | None = None):
        self.conflicts = conflicts or []
        super().__init__(rule, message)

    def to_detail(self) -> dict:
        detail = super().to_detail()
        if self.conflicts:
            detail["conflicts"] = self.conflicts
        return detail


class IllegalTransitionError(ConflictError):
    pass


class NotFoundError(BookingError):
    status_code = 404

    def __init__(self, what: str, message: str | None = None):
        super().__init__("not_found", message or f"{what} not found")


class PaymentVerificationError(BookingError):
    """The provider did not confirm the payment. The booking stays pending."""

    status_code = 400


class PaymentProviderError(PaymentVerificationError):
    """The provider could not be reached or refused the request."""

    status_code = 502

    def __init__(self, message: str):
        super().__init__("payment_provider", message)


class TransactionAbortError(BookingError):
    """A concurrent write won. Nothing was persisted; retry the whole request."""

    status_code = 409

    def __init__(self, message: str = "The booking could not be saved because of a concurrent update. Please retry."):
        super().__init__("transaction_aborted", message)
