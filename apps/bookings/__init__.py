"""Bookings app package.

Holds the rental booking lifecycle: interval conflict checks against a
vehicle's active reservations, pricing quotes and the booking ledger
commands (create, confirm, trip start and completion, cancellation with
refund, no-show, driver assignment). Writes on one vehicle are
serialized through a row lock so two bookings can never overlap.
"""
