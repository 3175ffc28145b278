"""
OpenStreetMap adapter backed by the Overpass API.
"""

from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from shared.schemas.dto import (
    AddressData,
    AddressMetadata,
    ContactInfo,
    DogPlaceData,
    DogPlaceMetadata,
    GeoLocation,
)
from shared.schemas.pipeline import SourceConfig
from shared.services.base import SourceAdapter
from shared.utils.configs import api_configs, base_configs
from shared.utils.errors import DataAcquisitionError
from shared.utils.helpers import (
    commune_from_postal_code,
    format_address,
    normalize_commune,
)
from shared.utils.logger import logger
from shared.utils.types import DataSourceProvider, DogPlaceType, ErrorType

# (tag key, tag value) -> place type
PLACE_TAGS: Dict[Tuple[str, str], DogPlaceType] = {
    ("leisure", "dog_park"): DogPlaceType.PARK,
    ("amenity", "veterinary"): DogPlaceType.VETERINARY_CARE,
    ("shop", "pet"): DogPlaceType.PET_STORE,
    ("shop", "pet_grooming"): DogPlaceType.GROOMING,
    ("amenity", "animal_boarding"): DogPlaceType.DAYCARE,
    ("amenity", "animal_training"): DogPlaceType.TRAINING,
}


class OSMService(SourceAdapter):
    """Runs Overpass QL queries over the Brussels bounding box."""

    provider = DataSourceProvider.OSM

    def __init__(self, config: SourceConfig, query_timeout: int = 120):
        super().__init__(config)
        self.base_url = (config.base_url or api_configs["overpass_api_url"]).rstrip("/")
        self.query_timeout = query_timeout

    @property
    def bbox(self) -> str:
        # Overpass expects south,west,north,east
        b = base_configs["brussels_bounds"]
        return f"{b['min_lat']},{b['min_lng']},{b['max_lat']},{b['max_lng']}"

    def build_address_query(self) -> str:
        selector = '["addr:housenumber"]["addr:street"]["addr:postcode"~"^10[0-9][0-9]$"]'
        return (
            f"[out:json][timeout:{self.query_timeout}];"
            f"(way{selector}({self.bbox});node{selector}({self.bbox}););"
            "out geom;"
        )

    def build_places_query(self) -> str:
        clauses = "".join(
            f'node["{key}"="{value}"]({self.bbox});way["{key}"="{value}"]({self.bbox});'
            for key, value in PLACE_TAGS
        )
        return f"[out:json][timeout:{self.query_timeout}];({clauses});out center;"

    async def run_query(self, query: str) -> List[Dict[str, Any]]:
        url = f"{self.base_url}/interpreter"
        async with aiohttp.ClientSession() as session:
            payload = await self._request_json(
                session, url, data=query, method="POST"
            )
        if not isinstance(payload, dict) or "elements" not in payload:
            raise DataAcquisitionError(
                message="Overpass response has no elements",
                error_type=ErrorType.PARSE_ERROR,
                provider=self.provider,
            )
        return payload["elements"]

    @staticmethod
    def element_location(element: Dict[str, Any]) -> Optional[GeoLocation]:
        """Nodes carry lat/lon, ways carry a center or a geometry list."""
        if "lat" in element and "lon" in element:
            return GeoLocation(latitude=element["lat"], longitude=element["lon"])
        if "center" in element:
            return GeoLocation(
                latitude=element["center"]["lat"], longitude=element["center"]["lon"]
            )
        geometry = element.get("geometry") or []
        if geometry:
            return GeoLocation(latitude=geometry[0]["lat"], longitude=geometry[0]["lon"])
        return None

    def to_address(self, element: Dict[str, Any]) -> Optional[AddressData]:
        tags = element.get("tags") or {}
        location = self.element_location(element)
        street = tags.get("addr:street", "")
        number = tags.get("addr:housenumber", "")
        if not location or not street or not number:
            return None
        postal_code = tags.get("addr:postcode", "")
        commune = normalize_commune(tags.get("addr:city")) or commune_from_postal_code(
            postal_code
        )
        return AddressData(
            id=f"osm_{element['type']}_{element['id']}",
            formatted_address=format_address(street, number, postal_code, commune),
            location=location,
            source=self.provider,
            street_name=street,
            street_number=number,
            postal_code=postal_code,
            municipality=commune,
            metadata=AddressMetadata(confidence=0.85, building_type=tags.get("building")),
        )

    def to_dog_place(self, element: Dict[str, Any]) -> Optional[DogPlaceData]:
        tags = element.get("tags") or {}
        location = self.element_location(element)
        place_type = next(
            (ptype for (k, v), ptype in PLACE_TAGS.items() if tags.get(k) == v), None
        )
        if not location or place_type is None:
            return None
        street = tags.get("addr:street", "")
        number = tags.get("addr:housenumber", "")
        postal_code = tags.get("addr:postcode", "")
        name = tags.get("name") or place_type.value.replace("_", " ").title()
        return DogPlaceData(
            id=f"osm_{element['type']}_{element['id']}",
            name=name,
            place_type=place_type,
            category=place_type.value,
            formatted_address=format_address(
                street, number, postal_code, commune_from_postal_code(postal_code)
            ),
            location=location,
            source=self.provider,
            contact=ContactInfo(
                phone=tags.get("phone") or tags.get("contact:phone"),
                website=tags.get("website") or tags.get("contact:website"),
                email=tags.get("email") or tags.get("contact:email"),
            ),
            opening_hours=[tags["opening_hours"]] if tags.get("opening_hours") else [],
            metadata=DogPlaceMetadata(confidence=0.75, dog_policy=tags.get("dog")),
        )

    async def get_all_addresses(self) -> List[AddressData]:
        elements = await self.run_query(self.build_address_query())
        addresses = [a for a in (self.to_address(e) for e in elements) if a]
        logger.info(f"Parsed {len(addresses)} addresses from {len(elements)} OSM elements")
        return addresses

    async def get_all_dog_places(self) -> List[DogPlaceData]:
        elements = await self.run_query(self.build_places_query())
        places = [p for p in (self.to_dog_place(e) for e in elements) if p]
        logger.info(f"Parsed {len(places)} dog places from {len(elements)} OSM elements")
        return places
