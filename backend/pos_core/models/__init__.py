from .inventory import Product, StockMovement, StockAlert
from .cart import CartLine
from .sales import Sale, SaleLine
from .refunds import Refund, RefundLine
from .coupons import Coupon, CouponUsage
from .loyalty import LoyaltyAccount, LoyaltyTransaction
from .documents import DocumentSequence

__all__ = [
    'Product', 'StockMovement', 'StockAlert',
    'CartLine',
    'Sale', 'SaleLine',
    'Refund', 'RefundLine',
    'Coupon', 'CouponUsage',
    'LoyaltyAccount', 'LoyaltyTransaction',
    'DocumentSequence',
]
