from django.urls import path
from . import views

app_name = 'checkout'

urlpatterns = [
    path('', views.checkout, name='checkout'),
    path('<uuid:order_id>/retry/', views.retry_payment, name='retry_payment'),
    path('<uuid:order_id>/events/', views.payment_events, name='payment_events'),
]
