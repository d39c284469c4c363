# Models package
from .product import Product, ProductType
from .stock_cell import StockCell, make_cell_id
from .booking_link import BookingLink
from .booking import (
    Booking,
    BookingItem,
    BookingStatus,
    BookingChannel,
    RentalType,
    PartnerRole,
    PaymentMethod,
    COMMISSION_PARTNER_ROLES
)
from .commission_payment import CommissionPayment, CommissionPaymentAllocation

__all__ = [
    "Product", "ProductType",
    "StockCell", "make_cell_id",
    "BookingLink",
    "Booking", "BookingItem", "BookingStatus", "BookingChannel", "RentalType",
    "PartnerRole", "PaymentMethod", "COMMISSION_PARTNER_ROLES",
    "CommissionPayment", "CommissionPaymentAllocation"
]
