"""
Shared kernel of the rental core

Base entity and event classes, money and time range value objects, the
error taxonomy, the unit of work and the message bus used by the
bookings and finances apps.
"""
