from typing import Any, Dict, List, Optional


class BaseServiceError(Exception):
    """Base exception for all service-related errors."""
    pass

class StoreError(BaseServiceError):
    """Raised when the local store cannot read or persist an item."""
    pass

class FeedUnavailableError(BaseServiceError):
    """Raised when the feed is empty or cannot be reached."""
    pass

class PlatformServiceError(BaseServiceError):
    """Base exception for platform service errors."""
    pass

class RemotePlatformError(PlatformServiceError):
    """Base exception for remote storefront failures."""
    pass

class RemoteTransportError(RemotePlatformError):
    """Network, timeout or HTTP status failure. Safe to retry on a later run."""
    pass

class RemoteUserError(RemotePlatformError):
    """The platform rejected the request (validation / userErrors)."""

    def __init__(self, message: str, user_errors: Optional[List[Dict[str, Any]]] = None):
        self.user_errors = user_errors or []
        if self.user_errors:
            details = "; ".join(
                f"{'.'.join(err.get('field') or []) or 'general'}: {err.get('message')}"
                for err in self.user_errors
            )
            message = f"{message} ({details})"
        super().__init__(message)

class ShopifyAPIError(RemotePlatformError):
    """Raised when the Shopify GraphQL endpoint returns top-level errors."""
    pass

class PartialCreateError(RemotePlatformError):
    """The product was created but a follow-up call on it failed."""

    def __init__(self, message: str, product_id: str):
        self.product_id = product_id
        super().__init__(f"{message} (product {product_id} was created)")
