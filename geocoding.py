from typing import Optional

import httpx
import structlog

from config import settings

logger = structlog.get_logger()


class GeocodingError(Exception):
    pass


def reverse_geocode(lat: float, lng: float, client: Optional[httpx.Client] = None) -> str:
    """Turn a coordinate pair into a display address using a Nominatim-compatible API."""
    own_client = client is None
    client = client or httpx.Client(timeout=10.0)
    try:
        resp = client.get(
            f"{settings.geocoder_url}/reverse",
            params={"format": "jsonv2", "lat": lat, "lon": lng},
            headers={"User-Agent": settings.geocoder_user_agent},
        )
        resp.raise_for_status()
        payload = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("reverse_geocode_failed", lat=lat, lng=lng, error=str(e))
        raise GeocodingError("Could not look up an address for this location") from e
    finally:
        if own_client:
            client.close()

    address = payload.get("display_name") if isinstance(payload, dict) else None
    if not address:
        raise GeocodingError("No address found for this location")
    return address
