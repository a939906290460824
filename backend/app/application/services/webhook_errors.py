class WebhookError(RuntimeError):
    status_code: int = 500
    error_code: str = "webhook_error"


class WebhookSignatureError(WebhookError):
    """Rejected before any side effect; Stripe treats 400 as final and does not retry."""

    status_code = 400
    error_code = "webhook_signature_error"


class MissingSignatureError(WebhookSignatureError):
    error_code = "missing_signature"


class InvalidSignatureError(WebhookSignatureError):
    error_code = "invalid_signature"


class WebhookConfigurationError(WebhookError):
    error_code = "webhook_misconfigured"


class StorageError(WebhookError):
    """Durable write failed; surfaced as 500 so Stripe redelivers."""

    error_code = "storage_error"


class TransientResolverFailure(WebhookError):
    error_code = "user_resolution_failed"


class PublishFailure(WebhookError):
    error_code = "publish_failed"


class WebhookProcessingError(WebhookError):
    error_code = "webhook_processing_failed"
