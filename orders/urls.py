from django.urls import path
from . import views

app_name = 'orders'

urlpatterns = [
    # Cart
    path('cart/', views.cart_detail, name='cart_detail'),
    path('ajax/cart/add/', views.cart_add_ajax, name='cart_add_ajax'),
    path('ajax/cart/update/', views.cart_update_ajax, name='cart_update_ajax'),

    # Order history
    path('', views.order_list, name='order_list'),
    path('events/', views.order_events, name='order_events'),
    path('<uuid:order_id>/', views.order_detail, name='order_detail'),
]
