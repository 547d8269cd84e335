# Ontology Models
from booking_app.models.ontology import (
    RoomType, Room, Guest, Booking, BookingRoom, RoomNightLock,
    BookingSequence, Payment, Refund, GatewayEventRecord, MaintenanceLog
)

__all__ = [
    'RoomType', 'Room', 'Guest', 'Booking', 'BookingRoom', 'RoomNightLock',
    'BookingSequence', 'Payment', 'Refund', 'GatewayEventRecord', 'MaintenanceLog'
]
