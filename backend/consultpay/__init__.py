"""consultpay: M-Pesa payment confirmation client for consultation bookings."""

__version__ = "1.0.0"
