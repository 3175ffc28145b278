"""
Foursquare Places adapter. Serves dog places only.
"""

from typing import Any, Dict, List, Optional

import aiohttp

from shared.schemas.dto import ContactInfo, DogPlaceData, DogPlaceMetadata, GeoLocation
from shared.schemas.pipeline import SourceConfig
from shared.services.base import SourceAdapter
from shared.utils.configs import api_configs, base_configs
from shared.utils.errors import DataAcquisitionError
from shared.utils.logger import logger
from shared.utils.types import DataSourceProvider, DogPlaceType, ErrorType

SEARCH_QUERIES: Dict[str, DogPlaceType] = {
    "dog park": DogPlaceType.PARK,
    "veterinarian": DogPlaceType.VETERINARY_CARE,
    "pet store": DogPlaceType.PET_STORE,
    "dog grooming": DogPlaceType.GROOMING,
    "dog training": DogPlaceType.TRAINING,
    "dog daycare": DogPlaceType.DAYCARE,
}


class FoursquareService(SourceAdapter):
    provider = DataSourceProvider.FOURSQUARE

    def __init__(self, config: SourceConfig, limit: int = 50, radius: int = 15000):
        super().__init__(config)
        self.api_key = config.api_key or api_configs["foursquare_api_key"]
        self.base_url = (config.base_url or api_configs["foursquare_base_url"]).rstrip("/")
        self.limit = limit
        self.radius = radius

    def to_dog_place(
        self, result: Dict[str, Any], place_type: DogPlaceType, query: str
    ) -> Optional[DogPlaceData]:
        main = (result.get("geocodes") or {}).get("main") or {}
        if "latitude" not in main or "longitude" not in main:
            return None
        rating = result.get("rating")
        return DogPlaceData(
            id=f"fsq_{result['fsq_id']}",
            name=result.get("name", ""),
            place_type=place_type,
            category=", ".join(c.get("name", "") for c in result.get("categories", [])),
            formatted_address=(result.get("location") or {}).get("formatted_address", ""),
            location=GeoLocation(latitude=main["latitude"], longitude=main["longitude"]),
            source=self.provider,
            contact=ContactInfo(
                phone=result.get("tel"),
                website=result.get("website"),
                email=result.get("email"),
            ),
            # Foursquare rates on a 0-10 scale
            rating=round(rating / 2, 1) if rating is not None else None,
            ratings_count=(result.get("stats") or {}).get("total_ratings"),
            price_level=result.get("price"),
            metadata=DogPlaceMetadata(confidence=0.8, search_category=query),
        )

    async def get_all_dog_places(self) -> List[DogPlaceData]:
        if not self.api_key:
            raise DataAcquisitionError(
                message="Foursquare API key not configured",
                error_type=ErrorType.CONFIG_ERROR,
                provider=self.provider,
                status_code=500,
            )

        center = base_configs["brussels_center"]
        url = f"{self.base_url}/places/search"
        self.config.headers.setdefault("Authorization", self.api_key)
        self.config.headers.setdefault("Accept", "application/json")

        places: List[DogPlaceData] = []
        async with aiohttp.ClientSession() as session:
            for query, place_type in SEARCH_QUERIES.items():
                params = {
                    "query": query,
                    "ll": f"{center['latitude']},{center['longitude']}",
                    "radius": self.radius,
                    "limit": self.limit,
                    "fields": "fsq_id,name,geocodes,location,categories,tel,website,email,rating,stats,price",
                }
                payload = await self._request_json(session, url, params=params)
                results = payload.get("results", []) if isinstance(payload, dict) else []
                mapped = [self.to_dog_place(r, place_type, query) for r in results]
                places.extend(p for p in mapped if p)
                logger.info(f"Foursquare returned {len(results)} results for '{query}'")
        return places
