"""
Hardcoded Brussels addresses used when every live address provider fails.
"""

from typing import List, Tuple

from shared.schemas.dto import AddressData, AddressMetadata, GeoLocation
from shared.services.base import SourceAdapter
from shared.utils.helpers import address_document_id, format_address
from shared.utils.types import DataSourceProvider

# street, number, commune, postal code, latitude, longitude
FALLBACK_ADDRESSES: List[Tuple[str, str, str, str, float, float]] = [
    ("Grand Place", "1", "Bruxelles", "1000", 50.8466, 4.3516),
    ("Rue Neuve", "123", "Bruxelles", "1000", 50.8514, 4.3550),
    ("Boulevard Anspach", "45", "Bruxelles", "1000", 50.8466, 4.3516),
    ("Rue de la Loi", "200", "Bruxelles", "1000", 50.8481, 4.3570),
    ("Avenue Louise", "100", "Ixelles", "1050", 50.8379, 4.3592),
    ("Chaussée d'Ixelles", "50", "Ixelles", "1050", 50.8379, 4.3592),
    ("Place Eugène Flagey", "1", "Ixelles", "1050", 50.8265, 4.3718),
    ("Chaussée de Haecht", "300", "Schaerbeek", "1030", 50.8727, 4.3732),
    ("Avenue Louis Bertrand", "150", "Schaerbeek", "1030", 50.8727, 4.3732),
    ("Chaussée de Charleroi", "200", "Saint-Gilles", "1060", 50.8265, 4.3400),
    ("Chaussée de Mons", "500", "Anderlecht", "1070", 50.8265, 4.3062),
    ("Chaussée de Gand", "300", "Molenbeek-Saint-Jean", "1080", 50.8600, 4.3200),
    ("Chaussée d'Alsemberg", "800", "Uccle", "1180", 50.8000, 4.3400),
    ("Avenue Brugmann", "400", "Uccle", "1180", 50.8000, 4.3400),
    ("Chaussée de Neerstalle", "100", "Forest", "1190", 50.8100, 4.3200),
    ("Avenue d'Auderghem", "200", "Etterbeek", "1040", 50.8265, 4.3718),
    ("Chaussée de Wemmel", "300", "Jette", "1090", 50.8800, 4.3300),
    ("Chaussée de Louvain", "400", "Evere", "1140", 50.8727, 4.4000),
    ("Avenue de Tervueren", "500", "Woluwe-Saint-Pierre", "1150", 50.8265, 4.4200),
    ("Chaussée de Wavre", "600", "Auderghem", "1160", 50.8100, 4.4200),
]


class ManualAddressService(SourceAdapter):
    """Serves the static address list under the Manual provider."""

    provider = DataSourceProvider.MANUAL

    async def get_all_addresses(self) -> List[AddressData]:
        return [
            AddressData(
                id=address_document_id(commune, street, number),
                # Several entries share approximate coordinates
                place_id=address_document_id(commune, street, number),
                formatted_address=format_address(street, number, postal_code, commune),
                location=GeoLocation(latitude=lat, longitude=lng),
                source=self.provider,
                street_name=street,
                street_number=number,
                postal_code=postal_code,
                municipality=commune,
                metadata=AddressMetadata(confidence=0.6, is_verified=True),
            )
            for street, number, commune, postal_code, lat, lng in FALLBACK_ADDRESSES
        ]
