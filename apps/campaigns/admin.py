# ==========================================
# apps/campaigns/admin.py
# ==========================================

from django.contrib import admin
from django.utils.html import format_html
from django.db.models import Sum, Q
from .models import Campaign, Commitment, CampaignStatus, CommitmentStatus, PAID_COMMITMENT_STATUSES


def _badge(label, bg, fg):
    return format_html(
        '<span style="background: {}; color: {}; padding: 3px 8px; '
        'border-radius: 10px; font-size: 11px;">{}</span>',
        bg, fg, label
    )


CAMPAIGN_COLORS = {
    CampaignStatus.WAITING_PAYMENT: ('#E5C49A', '#2C1810'),
    CampaignStatus.STARTED: ('#5E7F8E', 'white'),
    CampaignStatus.COMPLETED: ('#6B8E5E', 'white'),
    CampaignStatus.CANCELLED: ('#B85C5C', 'white'),
    CampaignStatus.ENDED_WITHOUT_PURCHASE: ('#A47449', 'white'),
}

COMMITMENT_COLORS = {
    CommitmentStatus.WAITING_PAYMENT: ('#E5C49A', '#2C1810'),
    CommitmentStatus.PENDING: ('#5E7F8E', 'white'),
    CommitmentStatus.COMPLETED: ('#6B8E5E', 'white'),
    CommitmentStatus.CANCELLED: ('#B85C5C', 'white'),
    CommitmentStatus.ENDED_WITHOUT_PURCHASE: ('#A47449', 'white'),
}


class CommitmentInline(admin.TabularInline):
    """Inline admin for commitments within a campaign."""
    model = Commitment
    extra = 0
    fields = ['customer', 'quantity', 'amount', 'status_badge', 'is_initiator', 'paid_at']
    readonly_fields = ['customer', 'quantity', 'amount', 'status_badge', 'is_initiator', 'paid_at']

    def status_badge(self, obj):
        bg, fg = COMMITMENT_COLORS.get(obj.status, ('#ccc', '#666'))
        return _badge(obj.get_status_display(), bg, fg)
    status_badge.short_description = 'Status'

    def has_add_permission(self, request, obj=None):
        """Commitments are created by the campaign engine only."""
        return False


@admin.register(Campaign)
class CampaignAdmin(admin.ModelAdmin):
    """
    Admin interface for Campaigns.

    Status is read-only here; every transition goes through the engine
    so the store's conditional updates stay the only writers.
    """

    list_display = [
        'product',
        'get_fill_display',
        'status_badge',
        'start_date',
        'end_date',
    ]
    list_filter = ['status', 'start_date', 'end_date']
    search_fields = ['product__name']
    readonly_fields = [
        'id',
        'product',
        'anchor_longitude',
        'anchor_latitude',
        'target_quantity',
        'status',
        'start_date',
        'end_date',
        'completed_at',
        'cancelled_at',
        'created_at',
        'updated_at',
    ]
    inlines = [CommitmentInline]
    date_hierarchy = 'start_date'

    def get_queryset(self, request):
        return super().get_queryset(request).select_related('product').annotate(
            committed=Sum(
                'commitments__quantity',
                filter=Q(commitments__status__in=PAID_COMMITMENT_STATUSES)
            )
        )

    def get_fill_display(self, obj):
        return f"{obj.committed or 0} / {obj.target_quantity}"
    get_fill_display.short_description = 'Committed'

    def status_badge(self, obj):
        bg, fg = CAMPAIGN_COLORS.get(obj.status, ('#ccc', '#666'))
        return _badge(obj.get_status_display(), bg, fg)
    status_badge.short_description = 'Status'
    status_badge.admin_order_field = 'status'


@admin.register(Commitment)
class CommitmentAdmin(admin.ModelAdmin):
    list_display = [
        'customer',
        'product',
        'quantity',
        'amount',
        'status_badge',
        'payment_method',
        'created_at',
    ]
    list_filter = ['status', 'payment_method', 'is_initiator', 'created_at']
    search_fields = ['customer__email', 'product__name', 'payment_session_id', 'refund_id']
    readonly_fields = [
        'id',
        'campaign',
        'customer',
        'product',
        'quantity',
        'amount',
        'status',
        'is_initiator',
        'payment_session_id',
        'payment_reference',
        'paid_at',
        'refund_id',
        'refund_status',
        'cancellation_reason',
        'cancel_requested_at',
        'cancelled_at',
        'created_at',
        'updated_at',
    ]

    def get_queryset(self, request):
        return super().get_queryset(request).select_related('customer', 'product')

    def status_badge(self, obj):
        bg, fg = COMMITMENT_COLORS.get(obj.status, ('#ccc', '#666'))
        return _badge(obj.get_status_display(), bg, fg)
    status_badge.short_description = 'Status'
    status_badge.admin_order_field = 'status'
