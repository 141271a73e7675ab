from django.contrib import admin, messages
from django.utils.html import format_html

from payments.models import MpesaTransaction

from .models import Order
from .transitions import InvalidTransition, advance_status, confirm_payment_manually

STATUS_COLOURS = {
    Order.Status.PENDING: ('#fff4e5', '#b06000'),
    Order.Status.PAID: ('#e6f4ea', '#137333'),
    Order.Status.SHIPPED: ('#ede7f6', '#5e35b1'),
    Order.Status.DELIVERED: ('#e3f2fd', '#1565c0'),
    Order.Status.CANCELLED: ('#fce8e6', '#c5221f'),
}


class MpesaTransactionInline(admin.TabularInline):
    model = MpesaTransaction
    extra = 0
    can_delete = False
    fields = ('checkout_request_id', 'phone_number', 'amount', 'status', 'response_description', 'mpesa_receipt_number', 'created_at')
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ('id_short', 'user', 'status_badge', 'total_price', 'customer_phone', 'transaction_id', 'created_at')
    list_filter = ('status', 'created_at')
    search_fields = ('id', 'customer_phone', 'transaction_id', 'user__username', 'user__email')
    date_hierarchy = 'created_at'
    list_per_page = 50
    inlines = [MpesaTransactionInline]

    # Status only moves through the actions below
    readonly_fields = (
        'id', 'user', 'products', 'total_price', 'status', 'transaction_id',
        'payment_confirmed_by', 'payment_confirmed_at', 'created_at', 'updated_at',
    )
    fields = readonly_fields[:6] + ('customer_phone', 'delivery_location', 'payment_method') + readonly_fields[6:]

    actions = ('mark_shipped', 'mark_delivered', 'cancel_orders', 'confirm_payment')

    def has_add_permission(self, request):
        return False

    @admin.display(description='Order', ordering='id')
    def id_short(self, obj):
        return str(obj.id)[:8]

    @admin.display(description='Status', ordering='status')
    def status_badge(self, obj):
        background, colour = STATUS_COLOURS.get(obj.status, ('#eee', '#333'))
        return format_html(
            '<span style="padding:2px 8px;border-radius:10px;background:{};color:{};">{}</span>',
            background, colour, obj.get_status_display(),
        )

    def _advance(self, request, queryset, new_status):
        moved = 0
        for order in queryset:
            try:
                advance_status(order, new_status)
                moved += 1
            except InvalidTransition as e:
                self.message_user(request, str(e), level=messages.WARNING)
        if moved:
            self.message_user(request, f"{moved} order(s) marked {new_status}.", level=messages.SUCCESS)

    @admin.action(description='Mark as shipped')
    def mark_shipped(self, request, queryset):
        self._advance(request, queryset, Order.Status.SHIPPED)

    @admin.action(description='Mark as delivered')
    def mark_delivered(self, request, queryset):
        self._advance(request, queryset, Order.Status.DELIVERED)

    @admin.action(description='Cancel orders')
    def cancel_orders(self, request, queryset):
        self._advance(request, queryset, Order.Status.CANCELLED)

    @admin.action(description='Confirm payment received (manual)')
    def confirm_payment(self, request, queryset):
        confirmed = 0
        for order in queryset:
            try:
                confirm_payment_manually(order, request.user)
                confirmed += 1
            except InvalidTransition as e:
                self.message_user(request, str(e), level=messages.WARNING)
        if confirmed:
            self.message_user(request, f"{confirmed} payment(s) confirmed.", level=messages.SUCCESS)
