"""
Utility functions for the application.
"""

import json
import re
from dataclasses import asdict, is_dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from shared.utils.configs import base_configs
from shared.utils.types import BoundingBox

POSTAL_CODE_COMMUNES: Dict[str, str] = {
    "1000": "Bruxelles",
    "1020": "Bruxelles",
    "1030": "Schaerbeek",
    "1040": "Etterbeek",
    "1050": "Ixelles",
    "1060": "Saint-Gilles",
    "1070": "Anderlecht",
    "1080": "Molenbeek-Saint-Jean",
    "1081": "Koekelberg",
    "1082": "Berchem-Sainte-Agathe",
    "1083": "Ganshoren",
    "1090": "Jette",
    "1120": "Bruxelles",
    "1130": "Bruxelles",
    "1140": "Evere",
    "1150": "Woluwe-Saint-Pierre",
    "1160": "Auderghem",
    "1170": "Watermael-Boitsfort",
    "1180": "Uccle",
    "1190": "Forest",
    "1200": "Woluwe-Saint-Lambert",
    "1210": "Saint-Josse-ten-Noode",
}

# Dutch commune names mapped to the French names used in documents
DUTCH_COMMUNE_NAMES: Dict[str, str] = {
    "brussel": "Bruxelles",
    "schaarbeek": "Schaerbeek",
    "elsene": "Ixelles",
    "sint-gillis": "Saint-Gilles",
    "anderlecht": "Anderlecht",
    "sint-jans-molenbeek": "Molenbeek-Saint-Jean",
    "jette": "Jette",
    "evere": "Evere",
    "sint-pieters-woluwe": "Woluwe-Saint-Pierre",
    "oudergem": "Auderghem",
    "watermaal-bosvoorde": "Watermael-Boitsfort",
    "ukkel": "Uccle",
    "vorst": "Forest",
    "sint-lambrechts-woluwe": "Woluwe-Saint-Lambert",
    "sint-joost-ten-node": "Saint-Josse-ten-Noode",
    "etterbeek": "Etterbeek",
    "koekelberg": "Koekelberg",
    "sint-agatha-berchem": "Berchem-Sainte-Agathe",
    "ganshoren": "Ganshoren",
}


class DataEncoder(json.JSONEncoder):
    """
    Custom JSON encoder for serializing records, versions and status objects.

    This encoder handles the following types:
    - dataclasses: Converted to dictionaries using `asdict`.
    - Enum: Replaced by its value.
    - datetime / date: Converted to ISO 8601 formatted strings.

    For other object types, the default JSONEncoder behavior is used.
    """

    def default(self, obj):
        if is_dataclass(obj) and not isinstance(obj, type):
            return asdict(obj)
        elif isinstance(obj, Enum):
            return obj.value
        elif isinstance(obj, datetime):
            return obj.isoformat()
        elif isinstance(obj, date):
            return obj.isoformat()
        return super().default(obj)


def utc_now() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def is_within_bounds(
    latitude: float,
    longitude: float,
    bounds: BoundingBox = base_configs["brussels_bounds"],
) -> bool:
    """
    Check whether a coordinate lies inside a bounding box (edges inclusive).

    Args:
        latitude: Latitude in decimal degrees
        longitude: Longitude in decimal degrees
        bounds: Box to test against, the Brussels-Capital Region by default

    Returns:
        True if the point is inside the box
    """
    return (
        bounds["min_lat"] <= latitude <= bounds["max_lat"]
        and bounds["min_lng"] <= longitude <= bounds["max_lng"]
    )


def is_valid_coordinate(latitude: Optional[float], longitude: Optional[float]) -> bool:
    if latitude is None or longitude is None:
        return False
    return -90 <= latitude <= 90 and -180 <= longitude <= 180


def normalize_commune(name: Optional[str]) -> str:
    """
    Normalize a commune name to its French spelling.

    Args:
        name: Commune name in French or Dutch

    Returns:
        The French commune name, or the input stripped if it is unknown
    """
    if not name:
        return ""
    cleaned = name.strip()
    return DUTCH_COMMUNE_NAMES.get(cleaned.lower(), cleaned)


def commune_from_postal_code(postal_code: Optional[str]) -> str:
    if not postal_code:
        return ""
    return POSTAL_CODE_COMMUNES.get(str(postal_code).strip(), "")


def clean_id_component(value: str, max_length: int = 20) -> str:
    """Lowercase and keep only [a-z0-9], truncated to max_length."""
    return re.sub(r"[^a-z0-9]", "", (value or "").lower())[:max_length]


def address_document_id(commune: str, street: str, number: str) -> str:
    """
    Build a stable Firestore document id for an address.

    Example:
        address_document_id("Ixelles", "Avenue Louise", "100")
        -> "ixelles_avenuelouise_100"
    """
    return (
        f"{clean_id_component(commune)}_{clean_id_component(street)}_"
        f"{clean_id_component(str(number))}"
    )


def generate_search_terms(
    street: str, number: str, commune: str, postal_code: str
) -> List[str]:
    """
    Generate lowercase search terms for an address document.

    Args:
        street: Street name
        number: House number
        commune: Commune name
        postal_code: Postal code

    Returns:
        Unique search terms, in insertion order
    """
    street_l = (street or "").lower().strip()
    commune_l = (commune or "").lower().strip()
    terms = [
        street_l,
        f"{number} {street_l}".strip(),
        commune_l,
        str(postal_code or "").strip(),
        f"{street_l} {commune_l}".strip(),
    ]
    terms.extend(word for word in street_l.split() if len(word) > 2)

    unique_terms: List[str] = []
    for term in terms:
        if term and term not in unique_terms:
            unique_terms.append(term)
    return unique_terms


def format_address(street: str, number: str, postal_code: str, commune: str) -> str:
    """Format a Belgian address as "Street Number, Postal Commune"."""
    head = f"{street} {number}".strip()
    tail = f"{postal_code} {commune}".strip()
    return ", ".join(part for part in (head, tail) if part)
