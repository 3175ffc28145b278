"""
Data Transfer Objects (DTOs) for the two datasets: Brussels addresses and
dog-friendly places.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from shared.utils.helpers import generate_search_terms, utc_now
from shared.utils.types import DataSourceProvider, DogPlaceType


@dataclass
class GeoLocation:
    """
    A WGS84 coordinate.

    Attributes:
        latitude (float): Latitude in decimal degrees.
        longitude (float): Longitude in decimal degrees.
        accuracy (float): Optional accuracy radius in metres.
    """

    latitude: float
    longitude: float
    accuracy: Optional[float] = None

    def to_dict(self) -> Dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude}


@dataclass
class AddressMetadata:
    confidence: float = 1.0
    is_verified: bool = False
    building_type: Optional[str] = None


@dataclass
class AddressData:
    """
    A single street address in the Brussels-Capital Region.

    Attributes:
        id (str): Stable identifier of the address within its source.
        formatted_address (str): Human readable "Street Number, Postal Commune".
        location (GeoLocation): Coordinates of the address.
        source (DataSourceProvider): Provider the record came from.
        street_name (str): Street name, French where available.
        street_number (str): House number, may contain letters ("12A").
        postal_code (str): Four digit Belgian postal code.
        municipality (str): Commune name, normalized to French.
        last_updated (datetime): When the provider last reported this record.
        is_active (bool): False for addresses that no longer exist.
        place_id (str): Optional external place id, used for deduplication.
        metadata (AddressMetadata): Confidence and verification details.
    """

    id: str
    formatted_address: str
    location: GeoLocation
    source: DataSourceProvider
    street_name: str = ""
    street_number: str = ""
    postal_code: str = ""
    municipality: str = ""
    last_updated: datetime = field(default_factory=utc_now)
    is_active: bool = True
    place_id: Optional[str] = None
    metadata: AddressMetadata = field(default_factory=AddressMetadata)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert the address into a Firestore document.

        Returns:
            Dict[str, Any]: The document body, including search terms.
        """
        return {
            "street": self.street_name,
            "number": self.street_number,
            "postalCode": self.postal_code,
            "commune": self.municipality,
            "fullAddress": self.formatted_address,
            "location": self.location.to_dict(),
            "searchTerms": generate_search_terms(
                self.street_name,
                self.street_number,
                self.municipality,
                self.postal_code,
            ),
            "source": self.source.value,
            "sourceId": self.id,
            "placeId": self.place_id,
            "isActive": self.is_active,
            "lastUpdated": self.last_updated,
            "confidence": self.metadata.confidence,
            "isVerified": self.metadata.is_verified,
        }


@dataclass
class ContactInfo:
    phone: Optional[str] = None
    website: Optional[str] = None
    email: Optional[str] = None


@dataclass
class DogPlaceMetadata:
    confidence: float = 1.0
    is_verified: bool = False
    dog_policy: Optional[str] = None
    search_category: Optional[str] = None


@dataclass
class DogPlaceData:
    """
    A point of interest relevant to dog owners (park, vet, pet store, cafe).

    Attributes:
        id (str): Stable identifier of the place within its source.
        name (str): Display name.
        place_type (DogPlaceType): Normalized place type.
        location (GeoLocation): Coordinates of the place.
        source (DataSourceProvider): Provider the record came from.
        category (str): Provider-specific category label.
        formatted_address (str): Address as reported by the provider.
        description (str): Free text description.
        contact (ContactInfo): Phone, website and email.
        opening_hours (List[str]): One line per weekday.
        amenities (List[str]): Dog-related amenities such as "water bowl".
        rating (float): Average rating between 0 and 5.
        ratings_count (int): Number of ratings behind `rating`.
        price_level (int): 0 (free) to 4 (very expensive).
        photos (List[str]): Photo URLs.
        place_id (str): External place id, used for deduplication.
        last_updated (datetime): When the provider last reported this record.
        is_active (bool): False for permanently closed places.
        metadata (DogPlaceMetadata): Confidence and dog policy details.
    """

    id: str
    name: str
    place_type: DogPlaceType
    location: GeoLocation
    source: DataSourceProvider
    category: str = ""
    formatted_address: str = ""
    description: str = ""
    contact: ContactInfo = field(default_factory=ContactInfo)
    opening_hours: List[str] = field(default_factory=list)
    amenities: List[str] = field(default_factory=list)
    rating: Optional[float] = None
    ratings_count: Optional[int] = None
    price_level: Optional[int] = None
    photos: List[str] = field(default_factory=list)
    place_id: Optional[str] = None
    last_updated: datetime = field(default_factory=utc_now)
    is_active: bool = True
    metadata: DogPlaceMetadata = field(default_factory=DogPlaceMetadata)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.place_type.value,
            "category": self.category,
            "address": self.formatted_address,
            "description": self.description,
            "location": self.location.to_dict(),
            "phone": self.contact.phone,
            "website": self.contact.website,
            "email": self.contact.email,
            "openingHours": list(self.opening_hours),
            "amenities": list(self.amenities),
            "rating": self.rating,
            "userRatingsTotal": self.ratings_count,
            "priceLevel": self.price_level,
            "photos": list(self.photos),
            "placeId": self.place_id,
            "source": self.source.value,
            "isActive": self.is_active,
            "lastUpdated": self.last_updated,
            "dogPolicy": self.metadata.dog_policy,
            "searchCategory": self.metadata.search_category,
        }
