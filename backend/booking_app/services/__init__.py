# Business Services
from booking_app.services.availability_service import AvailabilityService
from booking_app.services.price_service import PriceService
from booking_app.services.room_lock_service import RoomLockService
from booking_app.services.payment_service import PaymentService
from booking_app.services.booking_service import BookingService
from booking_app.services.assignment_service import AssignmentService

__all__ = [
    'AvailabilityService', 'PriceService', 'RoomLockService',
    'PaymentService', 'BookingService', 'AssignmentService'
]
