"""
Debounced live recalculation of a quotation being edited.

Every field edit restarts a short timer; only the last pending recalculation
runs, and on_change is called once per settled edit. The engine itself stays
pure and lock-free.
"""

import logging
import threading
from typing import Any, Callable, Dict, Iterable, Optional

from pricing_engine import compute_breakdown
from pricing_mapper import apply_pricing_update
from pricing_models import DEFAULT_POLICY, PricingBreakdown, PricingPolicy, PricingRequest

logger = logging.getLogger(__name__)

DEFAULT_DELAY_SECONDS = 0.4


class Debouncer:
    """Run only the most recent call after `delay_seconds` of quiet."""

    def __init__(self, delay_seconds: float = DEFAULT_DELAY_SECONDS):
        self.delay_seconds = delay_seconds
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._pending: Optional[tuple] = None

    def call(self, fn: Callable, *args, **kwargs):
        """Schedule fn, cancelling whatever was pending."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._pending = (fn, args, kwargs)
            self._timer = threading.Timer(self.delay_seconds, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def _fire(self):
        with self._lock:
            pending = self._pending
            self._pending = None
            self._timer = None
        if pending is not None:
            fn, args, kwargs = pending
            fn(*args, **kwargs)

    def cancel(self):
        """Drop the pending call, if any."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None
            self._pending = None

    def flush(self):
        """Run the pending call now instead of waiting for the timer."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None
        self._fire()

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._pending is not None


class LiveQuote:
    """
    A quotation held in UI state and recomputed after each edit settles.

    Example:
        quote = LiveQuote(PricingRequest(base_price=Decimal('30')), on_change=render)
        quote.update({'weight': '0.5'}, touched={'weight'})
    """

    def __init__(
        self,
        request: PricingRequest,
        on_change: Callable[[PricingBreakdown], Any],
        policy: PricingPolicy = DEFAULT_POLICY,
        delay_seconds: float = DEFAULT_DELAY_SECONDS,
    ):
        self.policy = policy
        self.on_change = on_change
        self._request = request
        self._debouncer = Debouncer(delay_seconds)

    @property
    def request(self) -> PricingRequest:
        return self._request

    def update(self, changes: Dict[str, Any], touched: Iterable[str]):
        """Apply the touched fields and schedule a recalculation."""
        self._request = apply_pricing_update(self._request, changes, touched)
        self._debouncer.call(self._recalculate, self._request)

    def _recalculate(self, request: PricingRequest):
        breakdown = compute_breakdown(request, self.policy)
        logger.debug(f"Recalculated quote: total_usd={breakdown.total_usd}")
        self.on_change(breakdown)

    def flush(self):
        self._debouncer.flush()

    def cancel(self):
        self._debouncer.cancel()
