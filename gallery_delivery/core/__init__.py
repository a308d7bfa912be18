"""
Concurrency primitives shared by the services.
"""

from gallery_delivery.core.pacing import BatchPacer
from gallery_delivery.core.rate_limiter import SlidingWindowRateLimiter
from gallery_delivery.core.single_flight import SingleFlight

__all__ = ["BatchPacer", "SingleFlight", "SlidingWindowRateLimiter"]
