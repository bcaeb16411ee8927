import pytest
from decimal import Decimal
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken
from apps.products.models import Product
from apps.campaigns.services import start_campaign, confirm_start_payment
from apps.campaigns.tests.fakes import (
    FakePaymentGateway,
    DOWNTOWN,
    NEXT_DOOR,
    ACROSS_TOWN,
    ALEXANDRIA,
    make_customer,
)


@pytest.fixture(autouse=True)
def campaign_settings(settings):
    """Route payments through the fake gateway and pin campaign settings."""
    settings.CAMPAIGN_PAYMENT_GATEWAY = 'apps.campaigns.tests.fakes.FakePaymentGateway'
    settings.CAMPAIGN_NOTIFIER = 'apps.campaigns.services.notifications.EmailNotifier'
    settings.EMAIL_BACKEND = 'django.core.mail.backends.locmem.EmailBackend'
    settings.CAMPAIGN_EXCLUSION_RADIUS_KM = 2.0
    settings.CAMPAIGN_DURATION_DAYS = 14
    settings.CAMPAIGN_PAYMENT_TIMEOUT_MINUTES = 30
    settings.CAMPAIGN_MAX_RETRIES = 3
    settings.CAMPAIGN_CURRENCY = 'egp'
    settings.PAYMENT_CALLBACK_BASE_URL = 'http://testserver'
    settings.SECURE_SSL_REDIRECT = False
    return settings


@pytest.fixture(autouse=True)
def gateway():
    """Return the fake gateway class with fresh state."""
    FakePaymentGateway.reset()
    yield FakePaymentGateway
    FakePaymentGateway.reset()


@pytest.fixture
def api_client():
    """Return an unauthenticated API client."""
    return APIClient()


@pytest.fixture
def supplier(db):
    return make_customer('supplier@example.com', None)


@pytest.fixture
def product(supplier):
    """Product with a bulk threshold of 10 units at 25.00 each."""
    return Product.objects.create(
        name='Olive Oil 5L',
        description='Cold pressed extra virgin olive oil',
        price=Decimal('25.00'),
        quantity=500,
        bulk_threshold=10,
        supplier=supplier,
        is_approved=True,
    )


@pytest.fixture
def other_product(supplier):
    return Product.objects.create(
        name='Basmati Rice 10kg',
        description='Long grain rice',
        price=Decimal('40.00'),
        quantity=200,
        bulk_threshold=5,
        supplier=supplier,
        is_approved=True,
    )


@pytest.fixture
def alice(db):
    return make_customer('alice@example.com', DOWNTOWN)


@pytest.fixture
def bob(db):
    return make_customer('bob@example.com', NEXT_DOOR)


@pytest.fixture
def carol(db):
    return make_customer('carol@example.com', ACROSS_TOWN)


@pytest.fixture
def dave(db):
    return make_customer('dave@example.com', ALEXANDRIA)


@pytest.fixture
def homeless(db):
    """Customer without a home location on file."""
    return make_customer('nomad@example.com', None)


@pytest.fixture
def started_campaign(product, alice):
    """Campaign started and paid by alice with 6 of 10 units."""
    checkout = start_campaign(product_id=product.id, customer=alice, quantity=6)
    confirm_start_payment(
        campaign_id=checkout.campaign.id,
        customer_id=alice.id,
        payment_session_id=checkout.session_id,
    )
    checkout.campaign.refresh_from_db()
    return checkout.campaign


@pytest.fixture
def alice_client(alice):
    """Return API client authenticated as alice."""
    client = APIClient()
    refresh = RefreshToken.for_user(alice)
    client.credentials(HTTP_AUTHORIZATION=f'Bearer {refresh.access_token}')
    return client


@pytest.fixture
def bob_client(bob):
    """Return API client authenticated as bob."""
    client = APIClient()
    refresh = RefreshToken.for_user(bob)
    client.credentials(HTTP_AUTHORIZATION=f'Bearer {refresh.access_token}')
    return client


@pytest.fixture
def dave_client(dave):
    client = APIClient()
    refresh = RefreshToken.for_user(dave)
    client.credentials(HTTP_AUTHORIZATION=f'Bearer {refresh.access_token}')
    return client
