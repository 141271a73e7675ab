from django.urls import path
from . import views

app_name = 'payments'

urlpatterns = [
    # Called by the checkout page
    path('stk-push/', views.stk_push, name='stk_push'),

    # M-Pesa callback URL (for Safaricom to call)
    path('mpesa-callback/', views.mpesa_callback, name='mpesa_callback'),

    path('status/<str:checkout_request_id>/', views.payment_status, name='payment_status'),
    path('register-urls/', views.register_urls, name='register_urls'),
]
