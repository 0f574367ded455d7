"""
Local-services marketplace backend.

Customers browse provider profiles and pay to unlock a provider's contact
details for a bounded or unlimited window. The unlock entitlement core lives
in ``marketplace.entitlements``; the HTTP surface lives in ``marketplace.api``.
"""

__version__ = "0.1.0"
