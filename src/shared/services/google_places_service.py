"""
Google Places adapter for dog-friendly places and addresses in Brussels.
"""

import asyncio
import re
from typing import Any, Dict, List, Optional

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
from shared.utils.helpers import POSTAL_CODE_COMMUNES, format_address, normalize_commune
from shared.utils.logger import logger
from shared.utils.types import DataSourceProvider, DogPlaceType, ErrorType

SEARCH_CATEGORIES: Dict[str, Dict[str, Any]] = {
    "dog_parks": {"query": "dog park", "type": DogPlaceType.PARK},
    "veterinary": {"query": "veterinaire", "type": DogPlaceType.VETERINARY_CARE},
    "pet_stores": {"query": "animalerie", "type": DogPlaceType.PET_STORE},
    "dog_friendly_cafes": {
        "query": "dog friendly cafe restaurant",
        "type": DogPlaceType.RESTAURANT,
    },
}

DETAIL_FIELDS = (
    "name,formatted_address,formatted_phone_number,website,rating,"
    "user_ratings_total,opening_hours,price_level,photos"
)

# "Rue Neuve 123, 1000 Bruxelles, Belgium"
ADDRESS_PATTERN = re.compile(
    r"^(?P<street>[^,\d]+?)\s+(?P<number>\d+[A-Za-z]?)\s*,\s*(?P<postal>1\d{3})\s+(?P<commune>[^,]+)"
)


class GooglePlacesService(SourceAdapter):
    """
    Fetches places through the Google Places Text Search API.

    Dog places are searched per category around the Brussels centre; addresses
    are taken from a text search per postal code and parsed out of
    `formatted_address`.
    """

    provider = DataSourceProvider.GOOGLE

    def __init__(
        self,
        config: SourceConfig,
        max_results_per_category: int = 50,
        page_delay: float = 3.0,
        fetch_details: bool = True,
    ):
        super().__init__(config)
        self.api_key = config.api_key or api_configs["google_places_api_key"]
        self.base_url = (config.base_url or api_configs["google_base_url"]).rstrip("/")
        self.max_results_per_category = max_results_per_category
        self.page_delay = page_delay
        self.fetch_details = fetch_details
        self.center = base_configs["brussels_center"]

    def _require_key(self):
        if not self.api_key:
            raise DataAcquisitionError(
                message="Google Places API key not configured",
                error_type=ErrorType.CONFIG_ERROR,
                provider=self.provider,
                status_code=500,
            )

    async def text_search(
        self, session: aiohttp.ClientSession, query: str, limit: int
    ) -> List[Dict[str, Any]]:
        """
        Run a paginated text search around the Brussels centre.

        Args:
            session: Open aiohttp session
            query: Free text query
            limit: Maximum number of results to collect

        Returns:
            Raw result dicts from the API
        """
        url = f"{self.base_url}/place/textsearch/json"
        params: Dict[str, Any] = {
            "query": query,
            "location": f"{self.center['latitude']},{self.center['longitude']}",
            "radius": 15000,
            "key": self.api_key,
        }
        results: List[Dict[str, Any]] = []

        while len(results) < limit:
            payload = await self._request_json(session, url, params=params)
            status = payload.get("status")
            if status not in ("OK", "ZERO_RESULTS"):
                raise DataAcquisitionError(
                    message=f"Google text search failed: {status} - {payload.get('error_message')}",
                    error_type=ErrorType.HTTP_ERROR,
                    provider=self.provider,
                    retryable=status in ("OVER_QUERY_LIMIT", "UNKNOWN_ERROR"),
                    metadata={"query": query, "status": status},
                )
            results.extend(payload.get("results", []))

            next_token = payload.get("next_page_token")
            if not next_token:
                break
            # The token only becomes valid after a short delay
            await asyncio.sleep(self.page_delay)
            params = {"pagetoken": next_token, "key": self.api_key}

        return results[:limit]

    async def get_place_details(
        self, session: aiohttp.ClientSession, place_id: str
    ) -> Dict[str, Any]:
        url = f"{self.base_url}/place/details/json"
        params = {"place_id": place_id, "fields": DETAIL_FIELDS, "key": self.api_key}
        payload = await self._request_json(session, url, params=params)
        if payload.get("status") != "OK":
            logger.warning(
                f"Details lookup for {place_id} returned {payload.get('status')}"
            )
            return {}
        return payload.get("result", {})

    def _photo_url(self, reference: str) -> str:
        return (
            f"{self.base_url}/place/photo?maxwidth=400"
            f"&photo_reference={reference}&key={self.api_key}"
        )

    def to_dog_place(
        self,
        result: Dict[str, Any],
        place_type: DogPlaceType,
        category: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> DogPlaceData:
        """
        Map a text search result, optionally enriched with details, to a DogPlaceData.
        """
        details = details or {}
        merged = {**result, **details}
        location = merged["geometry"]["location"] if "geometry" in merged else {}
        photos = [
            self._photo_url(photo["photo_reference"])
            for photo in merged.get("photos", [])[:3]
            if photo.get("photo_reference")
        ]
        return DogPlaceData(
            id=merged["place_id"],
            place_id=merged["place_id"],
            name=merged.get("name", ""),
            place_type=place_type,
            category=category,
            formatted_address=merged.get("formatted_address", ""),
            location=GeoLocation(
                latitude=location.get("lat"), longitude=location.get("lng")
            ),
            source=self.provider,
            contact=ContactInfo(
                phone=merged.get("formatted_phone_number"),
                website=merged.get("website"),
            ),
            opening_hours=merged.get("opening_hours", {}).get("weekday_text", []),
            rating=merged.get("rating"),
            ratings_count=merged.get("user_ratings_total"),
            price_level=merged.get("price_level"),
            photos=photos,
            is_active=merged.get("business_status", "OPERATIONAL") == "OPERATIONAL",
            metadata=DogPlaceMetadata(confidence=0.9, search_category=category),
        )

    async def get_all_dog_places(self) -> List[DogPlaceData]:
        self._require_key()
        places: List[DogPlaceData] = []
        async with aiohttp.ClientSession() as session:
            for category, search in SEARCH_CATEGORIES.items():
                logger.info(f"Searching Google Places for {category} ({search['query']})")
                results = await self.text_search(
                    session,
                    f"{search['query']} Bruxelles",
                    self.max_results_per_category,
                )
                for result in results:
                    if "place_id" not in result:
                        continue
                    details = None
                    if self.fetch_details:
                        details = await self.get_place_details(
                            session, result["place_id"]
                        )
                    places.append(
                        self.to_dog_place(result, search["type"], category, details)
                    )
                logger.info(f"Found {len(results)} results for {category}")
        return places

    def to_address(self, result: Dict[str, Any]) -> Optional[AddressData]:
        """
        Parse a text search result into an AddressData, or None when the
        formatted address is not a Brussels street address.
        """
        match = ADDRESS_PATTERN.match(result.get("formatted_address", ""))
        if not match or "geometry" not in result:
            return None
        street = match.group("street").strip()
        number = match.group("number")
        postal = match.group("postal")
        commune = normalize_commune(match.group("commune"))
        location = result["geometry"]["location"]
        return AddressData(
            id=result["place_id"],
            place_id=result["place_id"],
            formatted_address=format_address(street, number, postal, commune),
            location=GeoLocation(latitude=location["lat"], longitude=location["lng"]),
            source=self.provider,
            street_name=street,
            street_number=number,
            postal_code=postal,
            municipality=commune,
            metadata=AddressMetadata(confidence=0.8),
        )

    async def get_all_addresses(self) -> List[AddressData]:
        self._require_key()
        addresses: List[AddressData] = []
        async with aiohttp.ClientSession() as session:
            for postal_code, commune in POSTAL_CODE_COMMUNES.items():
                results = await self.text_search(
                    session,
                    f"adresse {postal_code} {commune}",
                    self.max_results_per_category,
                )
                parsed = [self.to_address(result) for result in results]
                addresses.extend(address for address in parsed if address)
        logger.info(f"Parsed {len(addresses)} addresses from Google Places")
        return addresses
