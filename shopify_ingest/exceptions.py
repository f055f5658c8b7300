# shopify_ingest/exceptions.py


class IngestionError(Exception):
    """Base class for failures that abort an ingestion run."""


class ConfigurationError(IngestionError):
    """Tenant setup makes the run impossible (no connected accounts, bad credentials)."""


class ShopifyApiError(IngestionError):
    """
    Raised when a Shopify list request fails and the account loop has to stop.
    Carries the HTTP details so the scheduler log shows what Shopify answered.
    """
    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        url: str | None = None,
        response_text: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.url = url
        self.response_text = response_text
