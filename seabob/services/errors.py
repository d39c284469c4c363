"""
Domain errors for the booking core.

Messages are user-facing (Spanish) and are returned verbatim by the API, so
they must never contain internals.
"""


class BookingError(Exception):
    """Base class for every expected booking/stock failure."""

    default_message = "No se pudo procesar la reserva."

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


# ========== Reservation Transaction rejections ==========

class ReservationError(BookingError):
    """Reservation rejected; nothing was written."""


class InvalidBookingRequest(ReservationError):
    default_message = "Los datos de la reserva no son válidos."


class NoStockError(ReservationError):
    def __init__(self, product_name: str, day=None):
        self.product_name = product_name
        self.day = day
        super().__init__(
            f"{product_name} no tiene stock disponible para las fechas seleccionadas. "
            f"Por favor, elige otro producto o cambia las fechas."
        )


class InsufficientStockError(ReservationError):
    def __init__(self, product_name: str, available: int, requested: int, day=None):
        self.product_name = product_name
        self.available = available
        self.requested = requested
        self.day = day
        super().__init__(
            f"{product_name} solo tiene {available} unidad(es) disponible(s), "
            f"pero solicitaste {requested}. Reduce la cantidad o cambia las fechas."
        )


class LinkInvalidError(ReservationError):
    default_message = "Este enlace no es válido."


class LinkInactiveError(ReservationError):
    default_message = "Este enlace está desactivado."


class LinkAlreadyUsedError(ReservationError):
    default_message = "Este enlace ya fue utilizado."


# ========== Lifecycle errors ==========

class BookingNotFoundError(BookingError):
    def __init__(self, booking_id: str):
        self.booking_id = booking_id
        super().__init__("La reserva no existe.")


class InvalidAccessTokenError(BookingError):
    default_message = "El enlace del contrato no es válido."


class PaymentRequiredError(BookingError):
    default_message = "Debes completar el pago antes de firmar el contrato."


class AlreadySignedError(BookingError):
    default_message = "El contrato ya fue firmado."


class AlreadyRefundedError(BookingError):
    default_message = "La reserva ya fue reembolsada."


class BookingStateError(BookingError):
    default_message = "La reserva no admite esta operación en su estado actual."


class InvalidRefundAmount(BookingError):
    def __init__(self, amount, total=None):
        self.amount = amount
        self.total = total
        super().__init__("Importe de reembolso no válido.")


class InvalidCommissionPayment(BookingError):
    default_message = "El pago de comisión no es válido."


# ========== Stock provisioning ==========

class ProvisioningBatchTooLarge(BookingError):
    def __init__(self, total_cells: int, limit: int):
        self.total_cells = total_cells
        self.limit = limit
        super().__init__(
            f"Demasiadas operaciones ({total_cells}, máximo {limit}). "
            f"Por favor reduce el rango de fechas o el número de productos."
        )


class InvalidStockValue(BookingError):
    default_message = "La cantidad disponible no puede ser negativa."


# ========== Infrastructure ==========

class PaymentGatewayError(BookingError):
    """The payment provider rejected or failed the call."""

    default_message = "El proveedor de pagos no pudo procesar la operación."

    def __init__(self, message: str = None, provider_message: str = None):
        self.provider_message = provider_message
        super().__init__(message)


class PaymentGatewayNotConfigured(PaymentGatewayError):
    default_message = "Stripe no está configurado."


class TransactionConflictError(BookingError):
    """Every retry of an atomic transaction collided with a concurrent writer."""

    default_message = "Hubo un problema al reservar el stock. Inténtalo otra vez."

    def __init__(self, label: str = "transaction"):
        self.label = label
        super().__init__()
