import logging

from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action, api_view, authentication_classes, permission_classes
from rest_framework.pagination import PageNumberPagination
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from drf_spectacular.utils import extend_schema, OpenApiParameter
from drf_spectacular.types import OpenApiTypes

from .models import Campaign
from .permissions import IsCommitmentOwner
from .serializers import (
    # Input serializers
    StartCampaignInputSerializer,
    JoinCampaignInputSerializer,
    CancelCommitmentInputSerializer,
    NearbyCampaignsQuerySerializer,
    CommitmentFilterSerializer,
    # Response serializers
    CampaignSerializer,
    CampaignSummarySerializer,
    CommitmentSerializer,
    CheckoutResponseSerializer,
    ConfirmationResponseSerializer,
    CancellationResponseSerializer,
)
from .services import (
    CampaignServiceError,
    InvalidInputError,
    InvalidStateError,
    PaymentGatewayError,
    PaymentProviderError,
    cancel_commitment,
    confirm_join_payment,
    confirm_start_payment,
    get_campaign_summary,
    get_payment_gateway,
    handle_payment_event,
    join_campaign,
    list_customer_commitments,
    list_nearby_campaigns,
    start_campaign,
)

logger = logging.getLogger(__name__)

UUID_PATTERN = '[0-9a-fA-F-]{36}'


class CommitmentPagination(PageNumberPagination):
    page_size = 20
    page_size_query_param = 'page_size'
    max_page_size = 100


def _checkout_response(checkout, message):
    data = CheckoutResponseSerializer({
        'message': message,
        'url': checkout.session_url,
        'campaign_id': checkout.campaign.id,
        'commitment_id': checkout.commitment.id,
        'product_name': checkout.commitment.product.name,
    }).data
    return Response(data, status=status.HTTP_201_CREATED)


class CampaignViewSet(mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    """
    Campaign operations.

    retrieve: Campaign with its fill level
    start: Open a new campaign and get a payment link
    join: Join a campaign nearby and get a payment link
    nearby: Live campaigns for a product around a location
    """

    queryset = Campaign.objects.select_related('product')
    serializer_class = CampaignSerializer
    permission_classes = [IsAuthenticated]
    lookup_value_regex = UUID_PATTERN

    @extend_schema(responses={200: CampaignSummarySerializer}, tags=['campaigns'])
    def retrieve(self, request, pk=None):
        summary = get_campaign_summary(campaign_id=pk)
        return Response(CampaignSummarySerializer(summary).data)

    @extend_schema(
        request=StartCampaignInputSerializer,
        responses={201: CheckoutResponseSerializer},
        tags=['campaigns'],
    )
    @action(detail=False, methods=['post'])
    def start(self, request):
        """
        Start a campaign for a product at the user's location.

        POST /api/campaigns/start/
        Body: {"product": "<uuid>", "quantity": 3, "longitude": 31.2, "latitude": 30.0}
        """
        input_serializer = StartCampaignInputSerializer(data=request.data)
        input_serializer.is_valid(raise_exception=True)
        params = input_serializer.validated_data

        checkout = start_campaign(
            product_id=params['product'],
            customer=request.user,
            quantity=params['quantity'],
            location=params['location'],
            payment_method=params['payment_method'],
        )
        return _checkout_response(checkout, 'Campaign created, complete the payment to start it.')

    @extend_schema(
        request=JoinCampaignInputSerializer,
        responses={201: CheckoutResponseSerializer},
        tags=['campaigns'],
    )
    @action(detail=True, methods=['post'])
    def join(self, request, pk=None):
        """
        Join a live campaign.

        POST /api/campaigns/{id}/join/
        """
        input_serializer = JoinCampaignInputSerializer(data=request.data)
        input_serializer.is_valid(raise_exception=True)
        params = input_serializer.validated_data

        checkout = join_campaign(
            campaign_id=pk,
            product_id=params['product'],
            customer=request.user,
            quantity=params['quantity'],
            location=params['location'],
            payment_method=params['payment_method'],
        )
        return _checkout_response(checkout, 'Commitment reserved, complete the payment to confirm it.')

    @extend_schema(
        parameters=[
            OpenApiParameter('product', OpenApiTypes.UUID, required=True),
            OpenApiParameter('longitude', OpenApiTypes.FLOAT, description='Defaults to home location'),
            OpenApiParameter('latitude', OpenApiTypes.FLOAT, description='Defaults to home location'),
        ],
        responses={200: CampaignSummarySerializer(many=True)},
        tags=['campaigns'],
    )
    @action(detail=False, methods=['get'])
    def nearby(self, request):
        """
        Live campaigns for a product within the campaign radius.

        GET /api/campaigns/nearby/?product=<uuid>
        """
        query_serializer = NearbyCampaignsQuerySerializer(data=request.query_params)
        query_serializer.is_valid(raise_exception=True)
        params = query_serializer.validated_data

        location = params['location'] or request.user.coordinates
        if location is None:
            raise InvalidInputError('No location given and no home location on file.')

        summaries = list_nearby_campaigns(product_id=params['product'], location=location)
        return Response(CampaignSummarySerializer(summaries, many=True).data)


class CommitmentViewSet(viewsets.ReadOnlyModelViewSet):
    """
    The current user's commitments.

    list: Own commitments, filterable by status
    retrieve: One own commitment
    cancel: Cancel a commitment, refunding it if paid
    """

    serializer_class = CommitmentSerializer
    permission_classes = [IsAuthenticated, IsCommitmentOwner]
    pagination_class = CommitmentPagination
    lookup_value_regex = UUID_PATTERN

    def get_queryset(self):
        filter_serializer = CommitmentFilterSerializer(data=self.request.query_params)
        filter_serializer.is_valid(raise_exception=True)
        return list_customer_commitments(
            customer=self.request.user,
            status=filter_serializer.validated_data.get('status'),
        )

    @extend_schema(
        request=CancelCommitmentInputSerializer,
        responses={200: CancellationResponseSerializer},
        tags=['campaigns'],
    )
    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        """
        Cancel a commitment.

        POST /api/campaigns/commitments/{id}/cancel/
        Body: {"reason": "optional"}
        """
        input_serializer = CancelCommitmentInputSerializer(data=request.data)
        input_serializer.is_valid(raise_exception=True)

        cancellation = cancel_commitment(
            commitment_id=pk,
            customer=request.user,
            reason=input_serializer.validated_data['reason'],
        )
        return Response(CancellationResponseSerializer({
            'message': 'Commitment cancelled.',
            'refund_status': cancellation.refund_status,
            'campaign_cancelled': cancellation.campaign_cancelled,
            'commitment': cancellation.commitment,
        }).data)


def _verify_paid(session_id):
    """Ask the gateway whether the session was actually paid."""
    if not session_id:
        raise InvalidInputError('Missing payment session.')
    try:
        payment_status = get_payment_gateway().get_payment_status(session_id)
    except PaymentGatewayError as exc:
        raise PaymentProviderError('Could not verify the payment.') from exc
    if payment_status != 'paid':
        raise InvalidStateError('Payment has not been completed.')


def _confirmation_response(confirmation):
    message = 'Payment already confirmed.' if confirmation.already_confirmed else 'Payment confirmed.'
    return Response(ConfirmationResponseSerializer({
        'message': message,
        'commitment': confirmation.commitment,
        'campaign_status': confirmation.campaign_status,
    }).data)


@extend_schema(
    parameters=[OpenApiParameter('session_id', OpenApiTypes.STR, required=True)],
    responses={200: ConfirmationResponseSerializer},
    description="Payment success redirect for a campaign start.",
    tags=['payments'],
)
@api_view(['GET'])
@permission_classes([AllowAny])
def start_payment_success(request, campaign_id, customer_id):
    """Confirm the initiator's payment - thin HTTP handler."""
    session_id = request.query_params.get('session_id', '')
    _verify_paid(session_id)

    confirmation = confirm_start_payment(
        campaign_id=campaign_id,
        customer_id=customer_id,
        payment_session_id=session_id,
    )
    return _confirmation_response(confirmation)


@extend_schema(
    parameters=[OpenApiParameter('session_id', OpenApiTypes.STR, required=True)],
    responses={200: ConfirmationResponseSerializer},
    description="Payment success redirect for joining a campaign.",
    tags=['payments'],
)
@api_view(['GET'])
@permission_classes([AllowAny])
def join_payment_success(request, campaign_id, customer_id, commitment_id):
    """Confirm a joiner's payment - thin HTTP handler."""
    session_id = request.query_params.get('session_id', '')
    _verify_paid(session_id)

    confirmation = confirm_join_payment(
        campaign_id=campaign_id,
        customer_id=customer_id,
        commitment_id=commitment_id,
        payment_session_id=session_id,
    )
    return _confirmation_response(confirmation)


@extend_schema(exclude=True)
@api_view(['POST'])
@authentication_classes([])
@permission_classes([AllowAny])
def payment_webhook(request):
    """Signed provider webhook; confirms completed checkout sessions."""
    signature = request.META.get('HTTP_STRIPE_SIGNATURE', '')
    try:
        event = get_payment_gateway().parse_webhook_event(request.body, signature)
    except PaymentGatewayError as exc:
        logger.warning("Rejected payment webhook: %s", exc)
        return Response({'error': 'Invalid webhook'}, status=status.HTTP_400_BAD_REQUEST)

    try:
        confirmation = handle_payment_event(event)
    except CampaignServiceError as exc:
        # The provider retries non-2xx responses; domain rejections are final
        logger.warning("Payment event %s not applied: %s", event.get('id'), exc.detail)
        return Response({'received': True, 'processed': False})

    return Response({'received': True, 'processed': confirmation is not None})
