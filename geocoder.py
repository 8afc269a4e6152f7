"""
Address geocoding backed by geopy.

`geocode()` returns a flat dict:
    {latitude, longitude, formattedAddress, street, city, stateCode, zipcode, countryCode}
"""
import logging
from typing import Dict, Optional

from fastapi import Depends
from geopy.exc import GeopyError
from geopy.geocoders import get_geocoder_for_service

from errors import ErrorResponse
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

USER_AGENT = "devcamper-api"


class Geocoder:
    def __init__(self, provider: str = "nominatim", api_key: Optional[str] = None, timeout: int = 10):
        self._provider = provider
        options = {"timeout": timeout}
        if provider == "nominatim":
            options["user_agent"] = USER_AGENT
        elif api_key:
            options["api_key"] = api_key
        self._client = get_geocoder_for_service(provider)(**options)

    def geocode(self, address: str) -> Dict:
        try:
            extra = {"addressdetails": True} if self._provider == "nominatim" else {}
            loc = self._client.geocode(address, **extra)
        except GeopyError as e:
            logger.error("Geocoding %r failed: %s", address, e)
            raise ErrorResponse("Geocoding service unavailable", 500)
        if loc is None:
            raise ErrorResponse(f"Could not geocode address {address}", 400)
        return to_location_fields(loc.latitude, loc.longitude, loc.address, loc.raw)


def to_location_fields(latitude: float, longitude: float, formatted: str, raw: Dict) -> Dict:
    details = raw.get("address", {}) if isinstance(raw, dict) else {}
    state_code = details.get("ISO3166-2-lvl4", "")
    state_code = state_code.split("-", 1)[-1] if state_code else details.get("state")
    street = " ".join(p for p in (details.get("house_number"), details.get("road")) if p) or None
    country = details.get("country_code")
    return {
        "latitude": latitude,
        "longitude": longitude,
        "formattedAddress": formatted,
        "street": street,
        "city": details.get("city") or details.get("town") or details.get("village"),
        "stateCode": state_code,
        "zipcode": details.get("postcode"),
        "countryCode": country.upper() if country else None,
    }


def to_location(geo: Dict) -> Dict:
    """Geocoder result -> stored GeoJSON `location` sub-document."""
    return {
        "type": "Point",
        "coordinates": [geo["longitude"], geo["latitude"]],
        "formattedAddress": geo.get("formattedAddress"),
        "street": geo.get("street"),
        "city": geo.get("city"),
        "state": geo.get("stateCode"),
        "zipcode": geo.get("zipcode"),
        "country": geo.get("countryCode"),
    }


def get_geocoder(settings: Settings = Depends(get_settings)) -> Geocoder:
    return Geocoder(settings.geocoder_provider, settings.geocoder_api_key)
