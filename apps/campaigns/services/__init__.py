"""
Campaigns app services layer.

Services contain the campaign lifecycle and orchestrate the store, the
payment gateway and notifications. All state-changing operations use
transactions, row locks and conditional status updates.
"""

from .exceptions import (
    CampaignServiceError,
    NotFoundError,
    CampaignNotFoundError,
    ProductNotFoundError,
    CommitmentNotFoundError,
    CustomerNotFoundError,
    InvalidInputError,
    CapacityExceededError,
    ProximityConflictError,
    ForbiddenError,
    InvalidStateError,
    RefundFailedError,
    PaymentProviderError,
)

from .geo import (
    distance_km,
    is_valid_location,
)

from .lifecycle import (
    Checkout,
    Confirmation,
    Cancellation,
    start_campaign,
    confirm_start_payment,
    join_campaign,
    confirm_join_payment,
    cancel_commitment,
    handle_payment_event,
    get_campaign_summary,
    list_nearby_campaigns,
    list_customer_commitments,
)

from .expiry import (
    SweepReport,
    sweep,
    sweep_expired,
    release_stale_payments,
)

from .payments import (
    PaymentGateway,
    PaymentGatewayError,
    StripePaymentGateway,
    get_payment_gateway,
)

from .notifications import (
    Notifier,
    EmailNotifier,
    get_notifier,
)


__all__ = [
    # Exceptions
    'CampaignServiceError',
    'NotFoundError',
    'CampaignNotFoundError',
    'ProductNotFoundError',
    'CommitmentNotFoundError',
    'CustomerNotFoundError',
    'InvalidInputError',
    'CapacityExceededError',
    'ProximityConflictError',
    'ForbiddenError',
    'InvalidStateError',
    'RefundFailedError',
    'PaymentProviderError',

    # Geo
    'distance_km',
    'is_valid_location',

    # Lifecycle
    'Checkout',
    'Confirmation',
    'Cancellation',
    'start_campaign',
    'confirm_start_payment',
    'join_campaign',
    'confirm_join_payment',
    'cancel_commitment',
    'handle_payment_event',
    'get_campaign_summary',
    'list_nearby_campaigns',
    'list_customer_commitments',

    # Expiry
    'SweepReport',
    'sweep',
    'sweep_expired',
    'release_stale_payments',

    # Payments
    'PaymentGateway',
    'PaymentGatewayError',
    'StripePaymentGateway',
    'get_payment_gateway',

    # Notifications
    'Notifier',
    'EmailNotifier',
    'get_notifier',
]
