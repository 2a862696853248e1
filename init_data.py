from decimal import Decimal

from marketplace import create_app
from marketplace.extensions import db
from marketplace.models import (
    Inventory,
    Product,
    ProductStatus,
    ProductVariant,
    SellerProfile,
    SellerStatus,
    User,
    UserRole,
)

app = create_app()

with app.app_context():
    # Create admin account (if not exists)
    admin_email = "admin@example.com"
    admin = User.query.filter_by(email=admin_email).first()
    if not admin:
        admin = User(email=admin_email, full_name="Admin",
                     role=UserRole.ADMIN)
        db.session.add(admin)
        print(f"Created admin account: {admin_email}")

    customer_email = "customer@example.com"
    if not User.query.filter_by(email=customer_email).first():
        db.session.add(User(email=customer_email, full_name="Demo Customer",
                            role=UserRole.CUSTOMER))
        print(f"Created customer account: {customer_email}")

    # Create sellers and products
    sellers_data = [
        {
            "email": "seller1@example.com",
            "store_name": "TechStore Pro",
            "store_slug": "techstore-pro",
            "commission_rate": "10",
            "products": [
                {
                    "name": "Wireless Bluetooth Headphones",
                    "slug": "wireless-bluetooth-headphones",
                    "variants": [
                        {"sku": "WBH-BLK", "price": "99.99",
                         "options": {"color": "Black"}, "stock": 50},
                        {"sku": "WBH-WHT", "price": "99.99",
                         "options": {"color": "White"}, "stock": 20},
                    ],
                },
                {
                    "name": "USB-C Cable",
                    "slug": "usb-c-cable",
                    "variants": [
                        {"sku": "USBC-2M", "price": "12.99",
                         "options": {"length": "2m"}, "stock": 200},
                    ],
                },
            ],
        },
        {
            "email": "seller2@example.com",
            "store_name": "Fashion Hub",
            "store_slug": "fashion-hub",
            "commission_rate": "15",
            "products": [
                {
                    "name": "Cotton T-Shirt",
                    "slug": "cotton-t-shirt",
                    "variants": [
                        {"sku": "TS-S", "price": "19.99",
                         "options": {"size": "S"}, "stock": 30},
                        {"sku": "TS-M", "price": "19.99",
                         "options": {"size": "M"}, "stock": 4},
                        {"sku": "TS-L", "price": "21.99",
                         "options": {"size": "L"}, "stock": 0,
                         "allow_backorder": True},
                    ],
                },
            ],
        },
        {
            "email": "seller3@example.com",
            "store_name": "Book Paradise",
            "store_slug": "book-paradise",
            "commission_rate": "8",
            "products": [
                {
                    "name": "Python Programming Guide",
                    "slug": "python-programming-guide",
                    "variants": [
                        {"sku": "BK-PY-PB", "price": "39.99",
                         "options": {"format": "Paperback"}, "stock": 25},
                        {"sku": "BK-PY-EB", "price": "19.99",
                         "options": {"format": "E-book"},
                         "track_inventory": False},
                    ],
                },
            ],
        },
    ]

    for seller_data in sellers_data:
        seller_user = User.query.filter_by(email=seller_data["email"]).first()
        if seller_user:
            continue

        seller_user = User(email=seller_data["email"], role=UserRole.SELLER)
        db.session.add(seller_user)
        db.session.flush()

        # Create seller profile
        profile = SellerProfile(
            user_id=seller_user.id,
            store_name=seller_data["store_name"],
            store_slug=seller_data["store_slug"],
            commission_rate=Decimal(seller_data["commission_rate"]),
            status=SellerStatus.APPROVED,
        )
        db.session.add(profile)
        db.session.flush()
        print(
            f"Created seller: {seller_data['email']} - "
            f"{seller_data['store_name']}"
        )

        # Create products for this seller
        for product_data in seller_data["products"]:
            product = Product(
                seller_id=profile.id,
                name=product_data["name"],
                slug=product_data["slug"],
                status=ProductStatus.ACTIVE,
            )
            db.session.add(product)
            db.session.flush()

            for variant_data in product_data["variants"]:
                variant = ProductVariant(
                    product_id=product.id,
                    sku=variant_data["sku"],
                    price=Decimal(variant_data["price"]),
                    options=variant_data["options"],
                )
                db.session.add(variant)
                db.session.flush()
                db.session.add(Inventory(
                    variant_id=variant.id,
                    quantity=variant_data.get("stock", 0),
                    reserved_quantity=0,
                    track_inventory=variant_data.get("track_inventory", True),
                    allow_backorder=variant_data.get(
                        "allow_backorder", False),
                ))
            print(f"  Created product: {product_data['name']}")

    db.session.commit()
    print("Data initialization completed!")
