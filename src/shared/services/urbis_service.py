"""
URBIS adapter: official Brussels address register served over WFS.
"""

from typing import Any, Dict, List, Optional

import aiohttp

from shared.schemas.dto import AddressData, AddressMetadata, GeoLocation
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
from shared.utils.types import DataSourceProvider, ErrorType


class URBISService(SourceAdapter):
    """Fetches every address point of the region from the URBIS WFS."""

    provider = DataSourceProvider.URBIS

    def __init__(self, config: SourceConfig, max_features: int = 500000):
        super().__init__(config)
        self.base_url = (config.base_url or api_configs["urbis_api_url"]).rstrip("/")
        self.max_features = max_features

    def _params(self) -> Dict[str, Any]:
        bounds = base_configs["brussels_bounds"]
        return {
            "service": "WFS",
            "version": "2.0.0",
            "request": "GetFeature",
            "typename": "UrbisAdm:Adre",
            "outputFormat": "application/json",
            "srsname": "EPSG:4326",
            "bbox": f"{bounds['min_lng']},{bounds['min_lat']},{bounds['max_lng']},{bounds['max_lat']}",
            "maxFeatures": self.max_features,
        }

    def to_address(self, feature: Dict[str, Any]) -> Optional[AddressData]:
        """
        Map one GeoJSON feature to an AddressData.

        Returns None for features without a street, house number or point geometry.
        """
        props = feature.get("properties") or {}
        geometry = feature.get("geometry") or {}
        coordinates = geometry.get("coordinates") or []

        street = props.get("RUE_FR") or props.get("RUE_NL") or ""
        number = str(props.get("NUM_MAISON") or props.get("NUMERO") or "").strip()
        if not street or not number or len(coordinates) < 2:
            return None

        postal_code = str(props.get("CODE_POSTAL") or "").strip()
        commune = normalize_commune(
            props.get("COMMUNE_FR") or props.get("COMMUNE_NL")
        ) or commune_from_postal_code(postal_code)

        # GeoJSON order is [lng, lat]
        longitude, latitude = coordinates[0], coordinates[1]
        return AddressData(
            id=str(feature.get("id") or f"urbis_{postal_code}_{street}_{number}"),
            formatted_address=format_address(street, number, postal_code, commune),
            location=GeoLocation(latitude=latitude, longitude=longitude),
            source=self.provider,
            street_name=street,
            street_number=number,
            postal_code=postal_code,
            municipality=commune,
            metadata=AddressMetadata(confidence=1.0, is_verified=True),
        )

    async def get_all_addresses(self) -> List[AddressData]:
        url = f"{self.base_url}/geoserver/ows"
        logger.info(f"Fetching URBIS addresses from {url}")
        async with aiohttp.ClientSession() as session:
            payload = await self._request_json(session, url, params=self._params())

        features = payload.get("features") if isinstance(payload, dict) else None
        if features is None:
            raise DataAcquisitionError(
                message="URBIS response has no features collection",
                error_type=ErrorType.PARSE_ERROR,
                provider=self.provider,
            )

        addresses = [a for a in (self.to_address(f) for f in features) if a]
        logger.info(
            f"Parsed {len(addresses)} of {len(features)} URBIS features into addresses"
        )
        return addresses
