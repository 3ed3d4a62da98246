from blissbay.errors import GatewayError
from blissbay.models import Category, Order, PaymentMethod, Product, User, UserRole
from blissbay.security import create_token, hash_password
from blissbay.services.categories import build_ancestors, slugify


def make_user(db, email="shopper@example.com", role=UserRole.user, name="Shopper"):
    user = User(name=name, email=email, hashed_password=hash_password("password123"), role=role)
    db.add(user)
    db.commit()
    return user


def make_category(db, name="Electronics", parent=None):
    category = Category(
        name=name,
        slug=slugify(name),
        parent_id=parent.id if parent else None,
        ancestors=build_ancestors(parent),
    )
    db.add(category)
    db.commit()
    return category


def make_product(db, name="Headphones", price=100.0, stock=5, category=None, **extra):
    product = Product(
        name=name,
        price=price,
        stock=stock,
        category_id=category.id if category else None,
        **extra,
    )
    db.add(product)
    db.commit()
    return product


def make_order(db, user, total=50.0, **extra):
    order = Order(
        user_id=user.id,
        subtotal=total,
        total_amount=total,
        payment_method=PaymentMethod.cod,
        shipping_address={"full_name": user.name, "city": "Portland", "country": "US"},
        **extra,
    )
    db.add(order)
    db.commit()
    return order


def stock_of(db, product_id):
    db.expire_all()
    return db.get(Product, product_id).stock


def headers_for(user, settings):
    return {"Authorization": f"Bearer {create_token(user.id, UserRole(user.role).value, settings)}"}


def card_declined():
    return GatewayError("Your card was declined.", code="card_declined")
