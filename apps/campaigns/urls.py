from django.urls import path, include
from rest_framework.routers import DefaultRouter
from . import views

app_name = 'campaigns'

# Note: commitments must be registered BEFORE empty prefix to avoid URL conflicts
router = DefaultRouter()
router.register(r'commitments', views.CommitmentViewSet, basename='commitment')
router.register(r'', views.CampaignViewSet, basename='campaign')

urlpatterns = [
    # Campaign ViewSet routes
    # POST   /api/campaigns/start/            - Start a campaign
    # GET    /api/campaigns/nearby/           - Live campaigns near a location
    # GET    /api/campaigns/{id}/             - Campaign with fill level
    # POST   /api/campaigns/{id}/join/        - Join a campaign

    # Commitment routes
    # GET    /api/campaigns/commitments/              - Own commitments
    # GET    /api/campaigns/commitments/{id}/         - One own commitment
    # POST   /api/campaigns/commitments/{id}/cancel/  - Cancel and refund

    # Payment callbacks
    path(
        'payments/start/<uuid:campaign_id>/<uuid:customer_id>/success/',
        views.start_payment_success,
        name='start-payment-success',
    ),
    path(
        'payments/join/<uuid:campaign_id>/<uuid:customer_id>/<uuid:commitment_id>/success/',
        views.join_payment_success,
        name='join-payment-success',
    ),
    path('payments/webhook/', views.payment_webhook, name='payment-webhook'),

    # Include router URLs
    path('', include(router.urls)),
]
