from django.contrib import admin
from .models import Product


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    """Admin interface for supplier products."""

    list_display = [
        'name',
        'supplier',
        'price',
        'quantity',
        'bulk_threshold',
        'is_approved',
        'created_at',
    ]
    list_filter = ['is_approved', 'created_at']
    search_fields = ['name', 'description', 'supplier__email']
    readonly_fields = ['id', 'created_at', 'updated_at']
    actions = ['approve_products']

    def approve_products(self, request, queryset):
        updated = queryset.update(is_approved=True)
        self.message_user(request, f'{updated} product(s) approved.')
    approve_products.short_description = 'Approve selected products'
