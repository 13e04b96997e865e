"""Splitting a geocoded address into job-creation fields."""

from __future__ import annotations

from sitewatch.model.models import JobLocation, PendingPrompt

DEFAULT_COUNTRY = "Australia"


def parse_job_location(
    address: str,
    lat: float,
    lng: float,
    default_country: str = DEFAULT_COUNTRY,
) -> JobLocation:
    """Split a formatted address into job-form fields.

    Expects "street, city, STATE POSTCODE, country". This is a best-effort
    comma split: addresses formatted any other way land in the wrong fields.

    Example:
        "12 King William St, Adelaide, SA 5000, Australia"
        -> street="12 King William St", city="Adelaide", state="SA",
           postal_code="5000", country="Australia"
    """
    parts = [p.strip() for p in address.split(",")]
    street = parts[0] if parts else ""
    city = parts[1] if len(parts) > 1 else ""
    state_zip = parts[2] if len(parts) > 2 else ""
    country = parts[3] if len(parts) > 3 else ""

    state_parts = state_zip.split(" ")
    state = state_parts[0] if state_parts else ""
    postal_code = state_parts[1] if len(state_parts) > 1 else ""

    return JobLocation(
        street_address=street or address,
        city=city,
        state=state,
        postal_code=postal_code,
        country=country or default_country,
        latitude=lat,
        longitude=lng,
    )


def job_location_from_prompt(prompt: PendingPrompt, default_country: str = DEFAULT_COUNTRY) -> JobLocation:
    site = prompt.site
    return parse_job_location(site.address, site.latitude, site.longitude, default_country)
