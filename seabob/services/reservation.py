"""
Reservation Transaction

Admits a booking against the stock ledger or rejects it with nothing
written. One code path serves every entry point (staff panel, public
booking link); callers only supply attribution.

Flow, inside one database transaction:
1. Public link guard (link still active and, if single-use, unused)
2. Capacity check of every (day, product) cell, day-major, items in
   submission order; the first failing cell decides the error
3. Insert booking + items, increment `reserved` on every cell, update link

Concurrent writers are detected through the version columns of the cells
and the link; the whole transaction is then re-run against fresh state.
"""

import logging
import secrets
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional
from sqlalchemy.orm import Session

from ..config import settings
from ..models.booking import (
    Booking, BookingItem, BookingStatus, BookingChannel, RentalType, PartnerRole
)
from ..models.booking_link import BookingLink
from ..models.product import Product
from ..utils.db_helpers import acquire_row_lock, run_in_transaction
from ..utils.logging_config import booking_logger
from ..utils.timeutils import expand_days, local_today, utcnow
from .commission import CommissionPolicy, compute_commission_total, get_commission_policy, item_subtotal
from .errors import (
    InvalidBookingRequest,
    InsufficientStockError,
    LinkAlreadyUsedError,
    LinkInactiveError,
    LinkInvalidError,
    NoStockError,
    ReservationError,
)
from .stock_ledger import StockLedger

logger = logging.getLogger(__name__)

PUBLIC_LINK_ACTOR = "public_link"


# ========== Request / result types ==========

@dataclass
class ItemRequest:
    product_id: str
    quantity: int
    rental_type: str = RentalType.DAY.value
    duration: int = 1


@dataclass
class BookingRequest:
    client_name: str
    client_email: str
    start_date: date
    end_date: date
    items: List[ItemRequest]
    client_phone: Optional[str] = None
    client_whatsapp: Optional[str] = None
    delivery_location: Optional[str] = None
    boat_name: Optional[str] = None
    mooring_number: Optional[str] = None
    delivery_time: Optional[str] = None
    notes: Optional[str] = None
    # Attribution
    channel: str = BookingChannel.STAFF.value
    created_by: Optional[str] = None
    partner_id: Optional[str] = None
    partner_role: Optional[str] = None
    link_token: Optional[str] = None
    # Staff only: confirm immediately, no hold
    payment_bypassed: bool = False


@dataclass
class StockRequirement:
    day: date
    product_id: str
    quantity: int


@dataclass
class ReservationResult:
    booking_id: str
    reference: str
    access_token: str
    status: str
    expires_at: Optional[datetime] = None
    total_price: object = None
    commission_total: object = None
    requirements: List[StockRequirement] = field(default_factory=list)


# ========== Pure helpers ==========

def compute_hold_expiry(start_date: date, now: Optional[datetime] = None,
                        payment_bypassed: bool = False) -> Optional[datetime]:
    """
    Deadline for paying or signing a pending booking.

    Long hold when the rental starts HOLD_THRESHOLD_DAYS or more calendar
    days after today (business timezone), short hold otherwise. No deadline
    when staff bypassed payment.
    """
    if payment_bypassed:
        return None
    now = now or utcnow()
    days_until_start = (start_date - local_today(now)).days
    if days_until_start >= settings.hold_threshold_days:
        hours = settings.hold_long_hours
    else:
        hours = settings.hold_short_hours
    return now + timedelta(hours=hours)


def build_requirements(start_date: date, end_date: date, items: List[ItemRequest]) -> List[StockRequirement]:
    """
    Expand items over the inclusive date range.

    Quantities of the same product on the same day are summed; order is
    day-major, then first appearance of each product in the item list.
    """
    requirements: Dict[tuple, StockRequirement] = {}
    for day in expand_days(start_date, end_date):
        for item in items:
            if not item.product_id:
                continue
            key = (day, item.product_id)
            current = requirements.get(key)
            if current:
                current.quantity += item.quantity or 0
            else:
                requirements[key] = StockRequirement(day, item.product_id, item.quantity or 0)
    return list(requirements.values())


def generate_reference(now: Optional[datetime] = None) -> str:
    """Human booking reference, e.g. RES-010625-042 (not unique by itself)."""
    today = local_today(now)
    return f"RES-{today.strftime('%d%m%y')}-{secrets.randbelow(1000):03d}"


def generate_access_token() -> str:
    """Unguessable token for the public contract page."""
    return secrets.token_urlsafe(32)


def check_link_usable(link: Optional[BookingLink]) -> BookingLink:
    """Raise the matching link error unless the link can still take bookings."""
    if link is None:
        raise LinkInvalidError()
    # A consumed single-use link is also inactive; report the consumption
    if link.single_use and (link.used or (link.reservations_created or 0) > 0):
        raise LinkAlreadyUsedError()
    if not link.active:
        raise LinkInactiveError()
    return link


# ========== Service ==========

class ReservationService:
    """
    Creates bookings atomically against the stock ledger.

    Usage:
        service = ReservationService(db)
        result = service.create_booking(request)
    """

    def __init__(self, db: Session, policy: Optional[CommissionPolicy] = None):
        self.db = db
        self.ledger = StockLedger(db)
        self.policy = policy or get_commission_policy()

    def _validate(self, request: BookingRequest) -> Dict[str, Product]:
        if not (request.client_name or "").strip() or not (request.client_email or "").strip():
            raise InvalidBookingRequest("El nombre y email del cliente son obligatorios.")
        if not request.items:
            raise InvalidBookingRequest("Debes añadir al menos un producto.")
        if request.start_date is None or request.end_date is None:
            raise InvalidBookingRequest("Las fechas de inicio y fin son obligatorias.")
        if request.end_date < request.start_date:
            raise InvalidBookingRequest("La fecha de fin no puede ser anterior a la de inicio.")
        if request.channel == BookingChannel.PUBLIC_LINK.value:
            if not request.link_token:
                raise LinkInvalidError()
            if request.payment_bypassed:
                raise InvalidBookingRequest("Las reservas públicas requieren pago.")

        for item in request.items:
            if not item.product_id:
                raise InvalidBookingRequest("Cada línea debe indicar un producto.")
            if item.quantity is None or item.quantity < 1:
                raise InvalidBookingRequest("La cantidad debe ser al menos 1.")
            if item.rental_type not in (RentalType.DAY.value, RentalType.HOUR.value):
                raise InvalidBookingRequest("Tipo de alquiler no válido.")
            if item.duration is not None and item.duration < 1:
                raise InvalidBookingRequest("La duración debe ser al menos 1.")

        product_ids = list({item.product_id for item in request.items})
        products = {
            p.id: p for p in self.db.query(Product).filter(Product.id.in_(product_ids)).all()
        }
        for product_id in product_ids:
            product = products.get(product_id)
            if not product or not product.is_active:
                raise InvalidBookingRequest("Uno de los productos seleccionados no está disponible.")
        return products

    def _check_capacity(self, requirements: List[StockRequirement], products: Dict[str, Product]) -> None:
        for req in requirements:
            snapshot = self.ledger.read_cell(req.day, req.product_id, lock=True)
            free = snapshot.free_units
            product_name = products[req.product_id].name
            if free <= 0:
                raise NoStockError(product_name, day=req.day)
            if req.quantity > free:
                raise InsufficientStockError(product_name, free, req.quantity, day=req.day)

    def _build_items(self, request: BookingRequest, products: Dict[str, Product]) -> List[BookingItem]:
        items = []
        for position, item in enumerate(request.items):
            product = products[item.product_id]
            if item.rental_type == RentalType.HOUR.value:
                unit_price = product.hourly_price or 0
            else:
                unit_price = product.daily_price or 0
            items.append(BookingItem(
                position=position,
                product_id=item.product_id,
                product_name=product.name,
                quantity=item.quantity,
                rental_type=item.rental_type,
                duration=item.duration or 1,
                unit_price=unit_price,
                commission_percent=product.commission_percent or 0,
            ))
        return items

    def create_booking(self, request: BookingRequest, now: Optional[datetime] = None) -> ReservationResult:
        """
        Run the Reservation Transaction.

        Raises:
            InvalidBookingRequest: malformed request, unknown/inactive product
            LinkInvalidError / LinkInactiveError / LinkAlreadyUsedError
            NoStockError / InsufficientStockError: first failing cell
            TransactionConflictError: every retry collided with other writers
        """
        now = now or utcnow()
        products = self._validate(request)
        requirements = build_requirements(request.start_date, request.end_date, request.items)

        # Stable across retries
        booking_id = str(uuid.uuid4())
        reference = generate_reference(now)
        access_token = generate_access_token()
        expires_at = compute_hold_expiry(request.start_date, now, request.payment_bypassed)
        status = BookingStatus.CONFIRMED.value if request.payment_bypassed else BookingStatus.PENDING.value
        is_public = request.channel == BookingChannel.PUBLIC_LINK.value

        def work(db: Session) -> ReservationResult:
            created_by = request.created_by
            partner_id = request.partner_id
            partner_role = request.partner_role
            link = None

            if is_public:
                link = check_link_usable(
                    acquire_row_lock(db, BookingLink, BookingLink.token == request.link_token)
                )
                created_by = link.created_by
                partner_id = link.partner_id
                partner_role = link.partner_role

            self._check_capacity(requirements, products)

            items = self._build_items(request, products)
            total_price = sum(
                (item_subtotal(i.unit_price, i.quantity, i.rental_type, i.duration,
                               request.start_date, request.end_date) for i in items),
                0
            )
            commission_total = compute_commission_total(
                items, request.start_date, request.end_date, partner_role, self.policy
            )

            booking = Booking(
                id=booking_id,
                reference=reference,
                client_name=request.client_name.strip(),
                client_email=request.client_email.strip(),
                client_phone=request.client_phone,
                client_whatsapp=request.client_whatsapp or request.client_phone,
                start_date=request.start_date,
                end_date=request.end_date,
                delivery_location=request.delivery_location,
                boat_name=request.boat_name,
                mooring_number=request.mooring_number,
                delivery_time=request.delivery_time,
                total_price=total_price,
                status=status,
                notes=request.notes,
                channel=request.channel,
                created_by=created_by,
                partner_id=partner_id,
                partner_role=partner_role,
                is_direct_client=partner_role not in {r.value for r in PartnerRole},
                public_link_id=link.token if link else None,
                access_token=access_token,
                commission_total=commission_total,
                commission_paid=0,
                expires_at=expires_at,
                expired=False,
                stock_released=False,
                confirmed_at=now if request.payment_bypassed else None,
                created_at=now,
                items=items,
            )
            db.add(booking)

            actor = created_by or (PUBLIC_LINK_ACTOR if is_public else None)
            for req in requirements:
                self.ledger.adjust_reserved(req.day, req.product_id, req.quantity, actor)

            if link is not None:
                link.reservations_created = (link.reservations_created or 0) + 1
                link.last_access_at = now
                if link.single_use:
                    link.active = False
                    link.used = True
                    link.used_at = now

            return ReservationResult(
                booking_id=booking_id,
                reference=reference,
                access_token=access_token,
                status=status,
                expires_at=expires_at,
                total_price=total_price,
                commission_total=commission_total,
                requirements=requirements,
            )

        try:
            result = run_in_transaction(
                self.db, work,
                max_attempts=settings.transaction_max_attempts,
                label=f"reservation {reference}"
            )
        except ReservationError as e:
            logger.info(f"Reservation rejected ({request.channel}): {e.message}")
            raise

        booking_logger.booking_created(
            booking_id=result.booking_id,
            reference=result.reference,
            channel=request.channel,
            status=result.status,
            expires_at=result.expires_at,
            cells=len(requirements),
        )
        return result


# ========== Booking links ==========

def create_booking_link(
    db: Session,
    created_by: Optional[str] = None,
    single_use: bool = False,
    partner_id: Optional[str] = None,
    partner_role: Optional[str] = None
) -> BookingLink:
    """Create a shareable public booking link."""
    link = BookingLink(
        token=secrets.token_urlsafe(16),
        active=True,
        single_use=single_use,
        used=False,
        visits=0,
        reservations_created=0,
        created_by=created_by,
        partner_id=partner_id,
        partner_role=partner_role,
    )
    db.add(link)
    db.commit()
    db.refresh(link)
    logger.info(f"Booking link created by {created_by or 'unknown'} (single_use={single_use})")
    return link


def register_link_visit(db: Session, token: str, now: Optional[datetime] = None) -> BookingLink:
    """
    Open a public link: count the visit and return it if it is still usable.
    The link state is re-validated at reservation time.
    """
    now = now or utcnow()

    def work(session: Session) -> BookingLink:
        link = check_link_usable(
            acquire_row_lock(session, BookingLink, BookingLink.token == token)
        )
        link.visits = (link.visits or 0) + 1
        link.last_access_at = now
        return link

    link = run_in_transaction(
        db, work,
        max_attempts=settings.transaction_max_attempts,
        label=f"link_visit {token}"
    )
    db.refresh(link)
    return link
