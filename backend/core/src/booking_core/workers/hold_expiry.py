"""Hold expiry: background sweep and per-session re-check.

HoldExpirySweeper releases every hold whose expiry has passed. It runs
either as a long-lived loop (run_forever) or as a scheduled Lambda
(lambda_handler, one sweep per EventBridge tick). Releases are idempotent,
so several sweepers may run at once.

HoldSessionMonitor serves a client watching its own hold: it reloads the
booking and reports whether it expired, without changing anything.
"""

import datetime as dt
import threading
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from booking_core.models import BookingError, HoldStatus
from booking_core.utils.clock import Clock, utc_now
from booking_core.utils.logging import get_logger, set_correlation_id

if TYPE_CHECKING:
    from booking_core.services.booking_locker import BookingLocker

logger = get_logger(__name__)


class SweepResult(BaseModel):
    """Counts from one sweep."""

    scanned: int = 0
    released: int = 0
    failed_booking_ids: list[str] = Field(default_factory=list)


class HoldExpirySweeper:
    """Releases expired holds so their inventory can be sold again."""

    def __init__(self, locker: "BookingLocker", clock: Clock = utc_now) -> None:
        self.locker = locker
        self.clock = clock

    def sweep(self, now: dt.datetime | None = None) -> SweepResult:
        """Release every hold that expired before now.

        A failure on one booking is logged and the sweep carries on.
        """
        cutoff = now or self.clock()
        result = SweepResult()

        for booking in self.locker.list_expired_holds(cutoff):
            result.scanned += 1
            try:
                self.locker.release_hold(booking.booking_id, reason="hold_expired")
                result.released += 1
            except BookingError as e:
                # Completed between the query and the release
                logger.info("Skipped expired hold %s: %s", booking.booking_id, e.code.value)
            except Exception:
                logger.exception("Failed to release expired hold %s", booking.booking_id)
                result.failed_booking_ids.append(booking.booking_id)

        if result.scanned:
            logger.info(
                "Hold sweep: scanned=%d released=%d failed=%d",
                result.scanned,
                result.released,
                len(result.failed_booking_ids),
            )
        return result

    def run_forever(
        self,
        interval_seconds: float,
        stop_event: threading.Event | None = None,
    ) -> None:
        """Sweep every interval_seconds until stop_event is set."""
        stop = stop_event or threading.Event()
        logger.info("Hold sweeper started, interval %.1fs", interval_seconds)
        while not stop.is_set():
            try:
                self.sweep()
            except Exception:
                logger.exception("Hold sweep failed")
            stop.wait(interval_seconds)
        logger.info("Hold sweeper stopped")


class HoldSessionMonitor:
    """Read-only expiry check for a client session holding a booking."""

    def __init__(self, locker: "BookingLocker", clock: Clock = utc_now) -> None:
        self.locker = locker
        self.clock = clock

    def check(self, booking_id: str) -> HoldStatus:
        now = self.clock()
        booking = self.locker.get_booking(booking_id)
        expired = self.locker.is_expired(booking, now)

        remaining = 0
        if not expired and booking.hold_expires_at is not None:
            remaining = max(0, int((booking.hold_expires_at - now).total_seconds()))
        return HoldStatus(booking=booking, expired=expired, seconds_remaining=remaining)


def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """Scheduled Lambda entry point: run one sweep.

    Args:
        event: EventBridge scheduled event
        context: Lambda context (unused)

    Returns:
        SweepResult as a dict
    """
    from booking_core.services.registry import get_booking_locker

    set_correlation_id(event.get("id"))
    result = HoldExpirySweeper(get_booking_locker()).sweep()
    return result.model_dump()


def main() -> None:
    """Run the sweeper as a long-lived process."""
    from booking_core.config import get_settings
    from booking_core.services.registry import get_booking_locker
    from booking_core.utils.logging import configure_logging

    configure_logging()
    sweeper = HoldExpirySweeper(get_booking_locker())
    sweeper.run_forever(get_settings().sweep_interval_seconds)


if __name__ == "__main__":
    main()
