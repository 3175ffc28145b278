"""
Configuration settings for the application.
"""

import os
from typing import Dict, TypedDict

import pytz
from dotenv import load_dotenv

from shared.utils.types import BoundingBox, Coordinates

# Load variables from .env before anything below reads the environment
load_dotenv()


class BaseConfig(TypedDict):
    """Type definition for base configuration values.

    Attributes:
        timezone: pytz timezone object used for local scheduling
        environment: Deployment environment (development, staging, production)
        brussels_center: Centre of the Brussels-Capital Region
        brussels_bounds: Bounding box records must fall within
        default_headers: Default HTTP headers for provider requests
    """

    timezone: pytz.BaseTzInfo
    environment: str
    brussels_center: Coordinates
    brussels_bounds: BoundingBox
    default_headers: Dict[str, str]


base_configs: BaseConfig = {
    "timezone": pytz.timezone(os.getenv("APP_TIMEZONE", "Europe/Brussels")),
    "environment": os.getenv("APP_ENV", "development").lower(),
    "brussels_center": {
        "latitude": 50.8503,
        "longitude": 4.3517,
    },
    "brussels_bounds": {
        "min_lat": 50.7641,
        "max_lat": 50.9228,
        "min_lng": 4.2177,
        "max_lng": 4.4821,
    },
    "default_headers": {
        "User-Agent": os.getenv("USER_AGENT", "DogPlacesBrussels/1.0"),
        "Accept": "application/json",
    },
}

api_configs = {
    "google_places_api_key": os.getenv("GOOGLE_PLACES_API_KEY"),
    "google_base_url": os.getenv(
        "GOOGLE_BASE_URL", "https://maps.googleapis.com/maps/api"
    ),
    "foursquare_api_key": os.getenv("FOURSQUARE_API_KEY"),
    "foursquare_base_url": os.getenv(
        "FOURSQUARE_BASE_URL", "https://api.foursquare.com/v3"
    ),
    "urbis_api_url": os.getenv("URBIS_API_URL", "https://geoservices-urbis.irisnet.be"),
    "overpass_api_url": os.getenv("OVERPASS_API_URL", "https://overpass-api.de/api"),
}

firestore_configs = {
    "project_id": os.getenv("EXPO_PUBLIC_FIREBASE_PROJECT_ID"),
    "private_key_id": os.getenv("FIREBASE_PRIVATE_KEY_ID"),
    "private_key": (os.getenv("FIREBASE_PRIVATE_KEY") or "").replace("\\n", "\n"),
    "client_email": os.getenv("FIREBASE_CLIENT_EMAIL"),
    "client_id": os.getenv("FIREBASE_CLIENT_ID"),
    "client_x509_cert_url": os.getenv("FIREBASE_CLIENT_X509_CERT_URL"),
    "addresses_collection": os.getenv("ADDRESSES_COLLECTION", "brussels_addresses"),
    "places_collection": os.getenv("PLACES_COLLECTION", "brussels_places"),
    "batch_size": int(os.getenv("FIRESTORE_BATCH_SIZE", 500)),
    "commit_retries": int(os.getenv("FIRESTORE_COMMIT_RETRIES", 3)),
}

redis_config = {
    "enabled": os.getenv("ENABLE_VERSION_STORE", "false").lower() == "true",
    "redis_url": os.getenv("REDIS_URL", "redis://localhost:6379"),
    "redis_socket_timeout": int(os.getenv("REDIS_SOCKET_TIMEOUT", 5)),
    "redis_socket_connect_timeout": int(os.getenv("REDIS_SOCKET_CONNECT_TIMEOUT", 5)),
    "redis_retry_on_timeout": os.getenv("REDIS_RETRY_ON_TIMEOUT", "true").lower()
    == "true",
    "versions_key": os.getenv("REDIS_VERSIONS_KEY", "dog_places:data_versions"),
}
