# Overview: Error taxonomy shared by the reconciliation services and routes.

"""
Reconciliation error taxonomy.

Per-line-item errors (UnresolvableReferenceError, InactiveItemError,
ValidationError, GroupGiftError, OverfundingError) are contained by the
orchestrator: the line is skipped, the webhook still succeeds.

Whole-payload errors escape to the webhook response:
- MalformedPayloadError: rejected, Shopify should not retry (400)
- TransientInfrastructureError: Shopify must redeliver (503)

A duplicate delivery is not an error. It is reported as the "duplicate"
line outcome.
"""


class WishcraftError(Exception):
    """Base class for domain errors raised by the service layer."""


class ValidationError(WishcraftError, ValueError):
    """400-level input problem."""


class NotFoundError(WishcraftError, LookupError):
    """404-level missing entity."""


class RegistryNotFoundError(NotFoundError):
    pass


class RegistryItemNotFoundError(NotFoundError):
    pass


class PurchaseNotFoundError(NotFoundError):
    pass


class ContributionNotFoundError(NotFoundError):
    pass


class InactiveItemError(WishcraftError):
    """Registry item is inactive and the caller did not allow inactive items."""


class UnresolvableReferenceError(WishcraftError):
    """A tagged line item points at a registry item or group gift that no longer resolves."""

    def __init__(self, message: str, *, reference: str | None = None):
        super().__init__(message)
        self.reference = reference


class InvalidTransitionError(WishcraftError):
    """Illegal contribution payment_status change."""

    def __init__(self, current_status: str, new_status: str):
        super().__init__(f"Cannot move contribution from {current_status} to {new_status}")
        self.current_status = current_status
        self.new_status = new_status


class OverfundingError(WishcraftError):
    """Completing a contribution would exceed the target beyond the configured tolerance."""


class GroupGiftError(WishcraftError):
    """Business-rule violation on a group gift (wrong purchase kind, currency mismatch, ...)."""


class MalformedPayloadError(WishcraftError):
    """Structurally invalid webhook body. Redelivery would not help."""


class TransientInfrastructureError(WishcraftError):
    """Database unavailable or similar. The webhook must report failure so the platform retries."""
