class PerformaError(Exception):
    """Domain failure carrying the HTTP status it maps to."""

    status_code = 400

    def __init__(self, detail: str, status_code: int | None = None):
        super().__init__(detail)
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code


class StoreError(PerformaError):
    pass


class VaultError(PerformaError):
    pass


class LiveError(PerformaError):
    pass


class ProviderError(PerformaError):
    """An outbound provider (Stripe, Resend, Twilio) refused a request."""

    status_code = 502
