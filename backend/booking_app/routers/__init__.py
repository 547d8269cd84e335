# API Routers
from booking_app.routers import bookings, rooms, payments, operations

__all__ = ['bookings', 'rooms', 'payments', 'operations']
