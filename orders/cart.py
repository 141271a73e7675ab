# orders/cart.py
from decimal import Decimal


class Cart:
    """Session cart: product id -> {name, price, quantity}.

    Name and price are captured when the product is added so checkout can
    snapshot them into the order.
    """

    def __init__(self, request):
        self.session = request.session
        cart = self.session.get("cart")
        if not cart:
            cart = self.session["cart"] = {}
        self.cart = cart

    def add(self, product, quantity=1):
        product_id = str(product.id)
        if product_id in self.cart:
            self.cart[product_id]["quantity"] += quantity
        else:
            self.cart[product_id] = {
                "name": product.name,
                "price": str(product.price),
                "quantity": quantity,
            }
        self.save()

    def set_quantity(self, product, quantity):
        product_id = str(product.id)
        if quantity <= 0:
            self.remove(product)
        elif product_id in self.cart:
            self.cart[product_id]["quantity"] = quantity
            self.save()
        else:
            self.add(product, quantity)

    def remove(self, product):
        product_id = str(product.id)
        if product_id in self.cart:
            del self.cart[product_id]
            self.save()

    def clear(self):
        """Clear the cart."""
        if "cart" in self.session:
            del self.session["cart"]
            self.session.modified = True
        self.cart = {}

    def save(self):
        self.session["cart"] = self.cart
        self.session.modified = True

    def get_total(self):
        return sum(
            (Decimal(item["price"]) * item["quantity"] for item in self.cart.values()),
            Decimal("0"),
        )

    def snapshot(self):
        """Line items in the shape orders store them"""
        return [
            {
                "id": product_id,
                "name": item["name"],
                "price": Decimal(item["price"]),
                "quantity": item["quantity"],
            }
            for product_id, item in self.cart.items()
        ]

    def as_dict(self):
        return {
            "items": [
                {**item, "id": product_id, "price": float(Decimal(item["price"]))}
                for product_id, item in self.cart.items()
            ],
            "cart_count": len(self),
            "cart_total": float(self.get_total()),
        }

    def __len__(self):
        """Return the total number of items in cart"""
        return sum(item["quantity"] for item in self.cart.values())
