from django.db.models import Q
from django.http import JsonResponse
from django.views.decorators.http import require_GET

from .models import Product


@require_GET
def product_list(request):
    """Available products, optionally filtered with ?q="""
    products = Product.objects.filter(is_available=True)

    query = request.GET.get('q', '').strip()
    if query:
        products = products.filter(Q(name__icontains=query) | Q(description__icontains=query))

    return JsonResponse({
        'products': [
            {
                'id': str(product.id),
                'name': product.name,
                'description': product.description,
                'price': float(product.price),
                'stock': product.stock,
            }
            for product in products
        ]
    })
