class PaymentError(RuntimeError):
    """Base class for billing failures surfaced to callers."""


class UnsupportedProvider(PaymentError):
    def __init__(self, provider: str):
        super().__init__(f"Unsupported payment provider: {provider}")
        self.provider = provider


class InvalidAccount(PaymentError):
    """
    Checkout was started without an account or actor.
    Not a hard failure: the caller should send the user to `redirect_to`.
    """

    def __init__(self, redirect_to: str, message: str = "Missing account or actor for checkout"):
        super().__init__(message)
        self.redirect_to = redirect_to


class NoBillingIdentity(PaymentError):
    def __init__(self, account_id: str | None, redirect_to: str = "/pricing"):
        super().__init__(f"Account {account_id} has no provider customer id yet")
        self.account_id = account_id
        self.redirect_to = redirect_to


class RemoteRejected(PaymentError):
    """The provider answered but declined the request."""


class RemoteUnavailable(PaymentError):
    """The provider could not be reached in time."""


class SignatureInvalid(PaymentError):
    pass


class InvalidPayload(PaymentError):
    pass


class MigrationAborted(PaymentError):
    def __init__(self, operation: str, processed: int, cause: Exception):
        super().__init__(f"[{operation}] aborted after {processed} account(s): {cause}")
        self.operation = operation
        self.processed = processed
        self.cause = cause
