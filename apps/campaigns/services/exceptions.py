"""
Domain exceptions for campaigns app.

Every engine failure is one of these. They subclass DRF's APIException
so views can let them propagate and DRF renders the status code.
"""
from rest_framework.exceptions import APIException


class CampaignServiceError(APIException):
    """Base exception for campaign service errors."""
    status_code = 400
    default_detail = 'Campaign operation failed.'
    default_code = 'campaign_error'


class NotFoundError(CampaignServiceError):
    status_code = 404
    default_detail = 'Not found.'
    default_code = 'not_found'


class CampaignNotFoundError(NotFoundError):
    default_detail = 'Campaign not found.'
    default_code = 'campaign_not_found'


class ProductNotFoundError(NotFoundError):
    default_detail = 'Product not found.'
    default_code = 'product_not_found'


class CommitmentNotFoundError(NotFoundError):
    default_detail = 'Commitment not found.'
    default_code = 'commitment_not_found'


class CustomerNotFoundError(NotFoundError):
    default_detail = 'Customer not found.'
    default_code = 'customer_not_found'


class InvalidInputError(CampaignServiceError):
    """Malformed location, non-positive quantity or mismatched product."""
    status_code = 400
    default_detail = 'Invalid input.'
    default_code = 'invalid_input'


class CapacityExceededError(CampaignServiceError):
    """Requested quantity does not fit in the campaign's remaining capacity."""
    status_code = 409
    default_detail = 'Requested quantity exceeds the remaining campaign capacity.'
    default_code = 'capacity_exceeded'


class ProximityConflictError(CampaignServiceError):
    """Start is too close to a live campaign, or join is too far from one."""
    status_code = 403
    default_detail = 'Location conflicts with the campaign exclusion radius.'
    default_code = 'proximity_conflict'


class ForbiddenError(CampaignServiceError):
    status_code = 403
    default_detail = 'You do not have permission to perform this action.'
    default_code = 'forbidden'


class InvalidStateError(CampaignServiceError):
    """Operation is not allowed from the current campaign or commitment status."""
    status_code = 409
    default_detail = 'Operation not allowed in the current state.'
    default_code = 'invalid_state'


class RefundFailedError(CampaignServiceError):
    """Payment gateway refused or failed the refund; nothing was changed."""
    status_code = 502
    default_detail = 'Refund could not be processed.'
    default_code = 'refund_failed'


class PaymentProviderError(CampaignServiceError):
    """Payment session could not be created or verified."""
    status_code = 502
    default_detail = 'Payment provider error.'
    default_code = 'payment_provider_error'
