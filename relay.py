"""
Delivery relay: runs on the delivery person's device.

Every position reported by the device's location source becomes exactly
one PUT of the order's delivery_location. There is no batching,
throttling or retry. Stopping the relay only ends the loop; the last
position stays stored on the order.
"""

import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Iterator, Optional

import click
import httpx
import structlog

logger = structlog.get_logger()


class PositionError(Exception):
    """The location source could not produce a position."""

    PERMISSION_DENIED = 1
    POSITION_UNAVAILABLE = 2
    TIMEOUT = 3

    MESSAGES = {
        PERMISSION_DENIED: "You denied the request for Geolocation. Please enable it in your settings.",
        POSITION_UNAVAILABLE: "Location information is unavailable.",
        TIMEOUT: "The request to get user location timed out.",
    }

    def __init__(self, code: int, detail: Optional[str] = None):
        self.code = code
        self.detail = detail
        super().__init__(detail or self.message)

    @property
    def message(self) -> str:
        return self.MESSAGES.get(self.code, "An unknown error occurred while tracking.")


@dataclass(frozen=True)
class Position:
    lat: float
    lng: float


def read_positions(lines: Iterable[str]) -> Iterator[Position]:
    """Parse ``lat,lng`` lines (blank lines and ``#`` comments are skipped)."""
    for line in lines:
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        try:
            lat_s, lng_s = line.split(",")
            position = Position(float(lat_s), float(lng_s))
        except ValueError:
            raise PositionError(PositionError.POSITION_UNAVAILABLE, f"Unreadable position: {line!r}")
        if not (-90 <= position.lat <= 90 and -180 <= position.lng <= 180):
            raise PositionError(PositionError.POSITION_UNAVAILABLE, f"Position out of range: {line!r}")
        yield position


class DeliveryRelay:
    """Position-watch loop on a worker thread.

    States: IDLE before start, TRACKING while running, STOPPED once the
    source is exhausted or stop() was called, FAILED after a PositionError.
    """

    def __init__(
        self,
        order_id: str,
        positions: Iterable[Position],
        client: httpx.Client,
        on_update: Optional[Callable[[Position], None]] = None,
    ) -> None:
        self.order_id = order_id
        self._positions = positions
        self._client = client
        self._on_update = on_update

        self._state = "IDLE"
        self.error: Optional[str] = None
        self.sent = 0
        self.failed = 0
        self.last_position: Optional[Position] = None
        self._lock = threading.RLock()
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._run, name=f"DeliveryRelay-{order_id}", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def stop(self, join: bool = True, timeout: Optional[float] = None) -> None:
        """Stop sharing location. A source blocked waiting for the next fix ends after that fix."""
        self._stop_event.set()
        if join:
            self._thread.join(timeout)

    def wait(self, timeout: Optional[float] = None) -> None:
        self._thread.join(timeout)

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "order_id": self.order_id,
                "state": self._state,
                "sent": self.sent,
                "failed": self.failed,
                "last_position": self.last_position,
                "error": self.error,
            }

    def push(self, position: Position) -> bool:
        """Send one position. Failures are logged and counted, never retried."""
        try:
            resp = self._client.put(
                f"/delivery/{self.order_id}/location",
                json={"lat": position.lat, "lng": position.lng},
            )
            resp.raise_for_status()
        except httpx.HTTPError as e:
            with self._lock:
                self.failed += 1
            logger.warning("delivery_location_push_failed", order_id=self.order_id, error=str(e))
            return False

        with self._lock:
            self.sent += 1
            self.last_position = position
        logger.info("delivery_location_pushed", order_id=self.order_id, lat=position.lat, lng=position.lng)
        if self._on_update is not None:
            self._on_update(position)
        return True

    def _run(self) -> None:
        with self._lock:
            self._state = "TRACKING"
        try:
            for position in self._positions:
                if self._stop_event.is_set():
                    break
                self.push(position)
        except PositionError as e:
            with self._lock:
                self.error = e.message
                self._state = "FAILED"
            logger.warning("delivery_tracking_aborted", order_id=self.order_id, code=e.code, detail=e.detail)
            return
        with self._lock:
            self._state = "STOPPED"


@click.command()
@click.argument("order_id")
@click.option("--api-url", envvar="STOREFRONT_API_URL", default="http://localhost:8000", show_default=True)
@click.option("--input", "source", type=click.File("r"), default="-", help="File of lat,lng lines (default: stdin).")
def main(order_id: str, api_url: str, source) -> None:
    """Share this device's position with ORDER_ID until the feed ends or Ctrl-C."""
    with httpx.Client(base_url=api_url, timeout=10.0) as client:
        relay = DeliveryRelay(
            order_id,
            read_positions(source),
            client,
            on_update=lambda p: click.echo(f"Location updated: Lat {p.lat:.4f}, Lng {p.lng:.4f}"),
        )
        relay.start()
        try:
            while relay.is_alive():
                relay.wait(0.5)
        except KeyboardInterrupt:
            # the in-flight push must finish before the client closes
            relay.stop(timeout=15.0)
            click.echo("Tracking stopped. You have stopped sharing your location.")
            return

    if relay.error:
        raise click.ClickException(relay.error)


if __name__ == "__main__":
    main()
