from marketplace.extensions import db
from marketplace.errors import ValidationError
from flask import current_app
from flask_login import UserMixin
from sqlalchemy import CheckConstraint, inspect
from sqlalchemy.orm import validates
from datetime import datetime
from decimal import Decimal
import enum
import json


class UserRole(enum.Enum):
    CUSTOMER = 'customer'
    SELLER = 'seller'
    ADMIN = 'admin'


class SellerStatus(enum.Enum):
    PENDING = 'pending'
    APPROVED = 'approved'
    SUSPENDED = 'suspended'
    REJECTED = 'rejected'


class ProductStatus(enum.Enum):
    DRAFT = 'draft'
    ACTIVE = 'active'
    INACTIVE = 'inactive'


class OrderStatus(enum.Enum):
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    PROCESSING = 'processing'
    SHIPPED = 'shipped'
    DELIVERED = 'delivered'
    CANCELLED = 'cancelled'
    REFUNDED = 'refunded'
    RETURNED = 'returned'


class OrderItemStatus(enum.Enum):
    PENDING = 'pending'
    PROCESSING = 'processing'
    SHIPPED = 'shipped'
    DELIVERED = 'delivered'
    CANCELLED = 'cancelled'


class PaymentStatus(enum.Enum):
    PENDING = 'pending'
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'
    REFUNDED = 'refunded'


class RefundStatus(enum.Enum):
    PENDING = 'pending'
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'


class PayoutStatus(enum.Enum):
    PENDING = 'pending'
    PAID = 'paid'
    FAILED = 'failed'


# Orders in these states never count towards sales, revenue or payouts.
EXCLUDED_ORDER_STATUSES = (OrderStatus.CANCELLED, OrderStatus.REFUNDED)


def _default_commission_rate():
    return Decimal(str(current_app.config['DEFAULT_COMMISSION_RATE']))


def _money(value):
    if value is None:
        return None
    return Decimal(str(value))


class User(UserMixin, db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    full_name = db.Column(db.String(100), nullable=True)
    role = db.Column(
        db.Enum(UserRole),
        nullable=False,
        default=UserRole.CUSTOMER)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)

    seller_profile = db.relationship(
        'SellerProfile',
        backref='user',
        uselist=False)
    orders = db.relationship('Order', backref='user', lazy='dynamic')

    def __repr__(self):
        return f'<User {self.email}>'


class SellerProfile(db.Model):
    __tablename__ = 'seller_profiles'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='CASCADE'),
        unique=True,
        nullable=False)
    store_name = db.Column(db.String(100), unique=True, nullable=False)
    store_slug = db.Column(
        db.String(100),
        unique=True,
        nullable=False,
        index=True)
    # Percentage, e.g. 10 for 10%. Read once per order line at checkout.
    commission_rate = db.Column(
        db.Numeric(5, 2),
        nullable=False,
        default=_default_commission_rate)
    # Denormalized counters, corrected by the nightly reconciliation.
    total_sales = db.Column(db.Integer, nullable=False, default=0)
    total_revenue = db.Column(
        db.Numeric(12, 2),
        nullable=False,
        default=Decimal('0'))
    status = db.Column(
        db.Enum(SellerStatus),
        nullable=False,
        default=SellerStatus.PENDING)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)

    products = db.relationship('Product', backref='seller', lazy='dynamic')

    __table_args__ = (
        CheckConstraint(
            'commission_rate >= 0 AND commission_rate <= 100',
            name='check_commission_rate_range'),
    )

    @validates('commission_rate')
    def validate_commission_rate(self, key, value):
        rate = _money(value)
        if rate is None or rate < 0 or rate > 100:
            raise ValidationError(
                'Commission rate must be between 0 and 100',
                field=key)
        return rate

    def __repr__(self):
        return f'<SellerProfile {self.store_name}>'


class Product(db.Model):
    __tablename__ = 'products'

    id = db.Column(db.Integer, primary_key=True)
    seller_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'seller_profiles.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    name = db.Column(db.String(200), nullable=False, index=True)
    slug = db.Column(db.String(200), unique=True, nullable=False)
    status = db.Column(
        db.Enum(ProductStatus),
        default=ProductStatus.ACTIVE,
        nullable=False)
    # Cached count of valid order lines, corrected by reconciliation.
    sales_count = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)

    variants = db.relationship(
        'ProductVariant',
        backref='product',
        lazy='dynamic',
        cascade='all, delete-orphan')

    def __repr__(self):
        return f'<Product {self.name}>'


class ProductVariant(db.Model):
    __tablename__ = 'product_variants'

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'products.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    sku = db.Column(db.String(100), unique=True, nullable=True)
    price = db.Column(db.Numeric(10, 2), nullable=False)
    # e.g. {"size": "M", "color": "Red"}
    options = db.Column(db.JSON, nullable=True)

    inventory = db.relationship(
        'Inventory',
        backref='variant',
        uselist=False,
        cascade='all, delete-orphan')

    __table_args__ = (
        CheckConstraint('price >= 0', name='check_variant_price_positive'),
    )

    def __repr__(self):
        return f'<ProductVariant {self.id} sku={self.sku}>'


class Inventory(db.Model):
    __tablename__ = 'inventory'

    id = db.Column(db.Integer, primary_key=True)
    variant_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'product_variants.id',
            ondelete='CASCADE'),
        unique=True,
        nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    # Held for placed but unconfirmed orders.
    reserved_quantity = db.Column(db.Integer, nullable=False, default=0)
    low_stock_threshold = db.Column(db.Integer, nullable=True, default=5)
    track_inventory = db.Column(db.Boolean, nullable=False, default=True)
    allow_backorder = db.Column(db.Boolean, nullable=False, default=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)

    __table_args__ = (
        CheckConstraint('quantity >= 0', name='check_inventory_quantity'),
        CheckConstraint(
            'reserved_quantity >= 0',
            name='check_inventory_reserved'),
    )

    @validates('quantity', 'reserved_quantity')
    def validate_quantity(self, key, value):
        if value is None or value < 0:
            raise ValidationError(f'{key} cannot be negative', field=key)
        return value

    @property
    def available(self) -> int:
        return self.quantity - self.reserved_quantity

    @property
    def is_low_stock(self) -> bool:
        if not self.track_inventory or self.low_stock_threshold is None:
            return False
        return self.quantity <= self.low_stock_threshold

    def __repr__(self):
        return (
            f"<Inventory variant={self.variant_id} qty={self.quantity} "
            f"reserved={self.reserved_quantity}>"
        )


class Order(db.Model):
    __tablename__ = 'orders'

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(
        db.String(32),
        unique=True,
        nullable=False,
        index=True)
    user_id = db.Column(
        db.Integer,
        db.ForeignKey('users.id'),
        nullable=False,
        index=True)
    # Address snapshots taken at checkout, not live references.
    shipping_address = db.Column(db.JSON, nullable=False)
    billing_address = db.Column(db.JSON, nullable=True)

    subtotal = db.Column(db.Numeric(10, 2), nullable=False)
    tax_total = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    shipping_total = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    discount_total = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    grand_total = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default='USD')

    status = db.Column(
        db.Enum(OrderStatus),
        default=OrderStatus.PENDING,
        nullable=False,
        index=True)
    payment_status = db.Column(
        db.Enum(PaymentStatus),
        default=PaymentStatus.PENDING,
        nullable=False)
    payment_provider = db.Column(db.String(50), nullable=True)
    payment_reference = db.Column(db.String(100), nullable=True)

    confirmed_at = db.Column(db.DateTime, nullable=True)
    processing_at = db.Column(db.DateTime, nullable=True)
    shipped_at = db.Column(db.DateTime, nullable=True)
    delivered_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    refunded_at = db.Column(db.DateTime, nullable=True)
    returned_at = db.Column(db.DateTime, nullable=True)

    tracking_number = db.Column(db.String(100), nullable=True)
    shipping_carrier = db.Column(db.String(50), nullable=True)
    # Customer-visible
    notes = db.Column(db.Text, nullable=True)
    # Staff-only
    internal_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)

    items = db.relationship(
        'OrderItem',
        backref='order',
        lazy='dynamic',
        order_by='OrderItem.id')
    refund = db.relationship(
        'RefundEntry',
        backref='order',
        uselist=False)

    __table_args__ = (
        CheckConstraint('grand_total >= 0', name='check_grand_total_positive'),
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        expected = (
            _money(self.subtotal)
            + _money(self.tax_total or 0)
            + _money(self.shipping_total or 0)
            - _money(self.discount_total or 0)
        )
        if expected < 0:
            raise ValidationError(
                'Grand total cannot be negative', field='grand_total')
        if self.grand_total is None:
            self.grand_total = expected
        elif _money(self.grand_total) != expected:
            raise ValidationError(
                'Grand total does not match its components',
                field='grand_total')

    def __repr__(self):
        return f'<Order {self.order_number} status={self.status}>'


class OrderItem(db.Model):
    __tablename__ = 'order_items'

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(
        db.Integer,
        db.ForeignKey('orders.id'),
        nullable=False,
        index=True)
    seller_id = db.Column(
        db.Integer,
        db.ForeignKey('seller_profiles.id'),
        nullable=False,
        index=True)
    product_id = db.Column(
        db.Integer,
        db.ForeignKey('products.id'),
        nullable=False,
        index=True)
    variant_id = db.Column(
        db.Integer,
        db.ForeignKey('product_variants.id'),
        nullable=False)

    # Snapshots, immune to later product edits.
    product_name = db.Column(db.String(200), nullable=False)
    variant_options = db.Column(db.JSON, nullable=True)
    sku = db.Column(db.String(100), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(10, 2), nullable=False)
    subtotal = db.Column(db.Numeric(10, 2), nullable=False)
    tax_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(10, 2), nullable=False)

    # Stamped once at checkout, never recomputed.
    commission_rate = db.Column(db.Numeric(5, 2), nullable=False)
    commission_amount = db.Column(db.Numeric(10, 2), nullable=False)
    seller_amount = db.Column(db.Numeric(10, 2), nullable=False)

    status = db.Column(
        db.Enum(OrderItemStatus),
        default=OrderItemStatus.PENDING,
        nullable=False,
        index=True)
    tracking_number = db.Column(db.String(100), nullable=True)
    shipping_carrier = db.Column(db.String(50), nullable=True)

    # Units held in reserved_quantity / taken from quantity for this line.
    stock_reserved = db.Column(db.Integer, nullable=False, default=0)
    stock_committed = db.Column(db.Integer, nullable=False, default=0)

    payout_id = db.Column(
        db.Integer,
        db.ForeignKey('seller_payouts.id'),
        nullable=True,
        index=True)

    processing_at = db.Column(db.DateTime, nullable=True)
    shipped_at = db.Column(db.DateTime, nullable=True)
    delivered_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)

    seller = db.relationship('SellerProfile', backref=db.backref(
        'order_items', lazy='dynamic'))
    product = db.relationship('Product', backref=db.backref(
        'order_items', lazy='dynamic'))
    variant = db.relationship('ProductVariant')

    __table_args__ = (
        CheckConstraint('quantity > 0', name='check_order_quantity_positive'),
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        total = (
            _money(self.subtotal)
            + _money(self.tax_amount or 0)
            - _money(self.discount_amount or 0)
        )
        if _money(self.total) != total:
            raise ValidationError(
                'Line total does not match its components', field='total')
        seller_amount = _money(self.total) - _money(self.commission_amount)
        if _money(self.seller_amount) != seller_amount:
            raise ValidationError(
                'Seller amount must equal total minus commission',
                field='seller_amount')

    @validates('quantity')
    def validate_quantity(self, key, value):
        if value is None or value <= 0:
            raise ValidationError('Quantity must be positive', field=key)
        return value

    @validates('commission_rate', 'commission_amount', 'seller_amount')
    def validate_commission_snapshot(self, key, value):
        state = inspect(self)
        if state.persistent:
            # Expired after a commit; load what is stored.
            with state.session.no_autoflush:
                current = getattr(self, key)
        else:
            current = self.__dict__.get(key)
        if current is not None and _money(current) != _money(value):
            raise ValidationError(
                f'{key} is fixed once the order line is created',
                field=key)
        return value

    def __repr__(self):
        return (
            f"<OrderItem {self.id} order={self.order_id} "
            f"seller={self.seller_id} status={self.status}>"
        )


class RefundEntry(db.Model):
    __tablename__ = 'refund_entries'

    id = db.Column(db.Integer, primary_key=True)
    # One compensating entry per order.
    order_id = db.Column(
        db.Integer,
        db.ForeignKey('orders.id'),
        unique=True,
        nullable=False)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default='USD')
    reason = db.Column(db.Text, nullable=True)
    status = db.Column(
        db.Enum(RefundStatus),
        default=RefundStatus.PENDING,
        nullable=False)
    provider_reference = db.Column(db.String(100), nullable=True)
    failure_reason = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    processed_at = db.Column(db.DateTime, nullable=True)

    def __repr__(self):
        return f'<RefundEntry {self.id} order={self.order_id} status={self.status}>'


class SellerPayout(db.Model):
    __tablename__ = 'seller_payouts'

    id = db.Column(db.Integer, primary_key=True)
    seller_id = db.Column(
        db.Integer,
        db.ForeignKey('seller_profiles.id'),
        nullable=False,
        index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default='USD')
    order_item_ids = db.Column(db.JSON, nullable=False, default=list)
    period_start = db.Column(db.DateTime, nullable=False)
    period_end = db.Column(db.DateTime, nullable=False)
    status = db.Column(
        db.Enum(PayoutStatus),
        default=PayoutStatus.PENDING,
        nullable=False)
    transfer_reference = db.Column(db.String(100), nullable=True)
    failure_reason = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    processed_at = db.Column(db.DateTime, nullable=True)

    seller = db.relationship('SellerProfile', backref=db.backref(
        'payouts', lazy='dynamic'))
    items = db.relationship('OrderItem', backref='payout', lazy='dynamic')

    @property
    def is_processed(self) -> bool:
        return self.status in (PayoutStatus.PAID, PayoutStatus.FAILED)

    def __repr__(self):
        return f'<SellerPayout {self.id} seller={self.seller_id} status={self.status}>'


class AuditLog(db.Model):
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    actor_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='SET NULL'),
        nullable=True)
    actor_role = db.Column(db.String(20), nullable=False)
    # e.g., ORDER_ITEM_STATUS_UPDATE, REFUND_PROCESS
    action = db.Column(db.String(100), nullable=False)
    # ORDER, ORDER_ITEM, SELLER, PAYOUT, etc.
    target_type = db.Column(db.String(50), nullable=True)
    target_id = db.Column(db.Integer, nullable=True)
    ip = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(500), nullable=True)
    # JSON format key field snapshot
    payload_json = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False,
        index=True)

    def set_payload(self, data):
        self.payload_json = json.dumps(data, ensure_ascii=False, default=str)

    def get_payload(self):
        if self.payload_json:
            return json.loads(self.payload_json)
        return {}

    def __repr__(self):
        return f'<AuditLog {self.id} action={self.action}>'
