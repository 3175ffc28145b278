"""
Validation of the documents stored in the Firestore collections.
"""

import re
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Tuple
from urllib.parse import urlparse

from shared.utils.helpers import POSTAL_CODE_COMMUNES, is_valid_coordinate, is_within_bounds
from shared.utils.logger import logger
from shared.utils.types import BoundingBox, DataType, DogPlaceType

# Wider than the region itself, places just across the border are still relevant
EXTENDED_BRUSSELS_BOUNDS: BoundingBox = {
    "min_lat": 50.7,
    "max_lat": 51.0,
    "min_lng": 4.0,
    "max_lng": 4.6,
}

PHONE_PATTERN = re.compile(r"^[\d\s\+\-\(\)\.]{8,}$")

REQUIRED_FIELDS: Dict[DataType, Tuple[str, ...]] = {
    DataType.ADDRESSES: ("street", "number", "postalCode", "commune", "location"),
    DataType.DOG_PLACES: ("name", "location"),
}

PLACE_TYPES = {place_type.value for place_type in DogPlaceType}


@dataclass
class DocumentIssues:
    doc_id: str
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class ValidationReport:
    """
    Outcome of validating one collection.

    Attributes:
        data_type (DataType): Collection that was validated.
        total (int): Documents read.
        valid (int): Documents without errors (warnings allowed).
        invalid (int): Documents with at least one error.
        issues (List[DocumentIssues]): Errors and warnings per document.
        duplicates (List[Tuple[str, str]]): Pairs of document ids that look like the same thing.
        by_category (Dict[str, int]): Counts per place type or commune.
        by_source (Dict[str, int]): Counts per provider.
        ratings (Dict[str, int]): Rating buckets, places only.
    """

    data_type: DataType
    total: int = 0
    valid: int = 0
    invalid: int = 0
    issues: List[DocumentIssues] = field(default_factory=list)
    duplicates: List[Tuple[str, str]] = field(default_factory=list)
    by_category: Dict[str, int] = field(default_factory=dict)
    by_source: Dict[str, int] = field(default_factory=dict)
    ratings: Dict[str, int] = field(default_factory=dict)

    @property
    def warning_count(self) -> int:
        return sum(len(issue.warnings) for issue in self.issues)

    def summary(self) -> Dict[str, Any]:
        return {
            "data_type": self.data_type.value,
            "total": self.total,
            "valid": self.valid,
            "invalid": self.invalid,
            "warnings": self.warning_count,
            "duplicates": len(self.duplicates),
            "by_category": self.by_category,
            "by_source": self.by_source,
            "ratings": self.ratings,
        }


def rating_bucket(rating: Any) -> str:
    if rating is None:
        return "none"
    if rating >= 4:
        return "excellent"
    if rating >= 3:
        return "good"
    if rating >= 2:
        return "average"
    return "poor"


def normalize_name(name: str) -> str:
    return re.sub(r"[^a-z0-9]", "", (name or "").lower())


def names_similar(first: str, second: str) -> bool:
    a, b = normalize_name(first), normalize_name(second)
    if not a or not b:
        return False
    return a == b or a in b or b in a


class CollectionValidator:
    """Checks field presence, coordinates, value ranges and duplicates."""

    def __init__(self, data_type: DataType):
        self.data_type = data_type

    def _check_location(self, doc: Dict[str, Any], issues: DocumentIssues) -> None:
        location = doc.get("location") or {}
        latitude, longitude = location.get("latitude"), location.get("longitude")
        if not is_valid_coordinate(latitude, longitude):
            issues.errors.append(f"Invalid coordinates: {latitude}, {longitude}")
        elif not is_within_bounds(latitude, longitude, EXTENDED_BRUSSELS_BOUNDS):
            issues.warnings.append(f"Outside Brussels area: {latitude}, {longitude}")

    def _check_place(self, doc: Dict[str, Any], issues: DocumentIssues) -> None:
        if not doc.get("placeId"):
            issues.warnings.append("Missing placeId")

        place_type = doc.get("type")
        if not place_type:
            issues.warnings.append("Missing type")
        elif place_type not in PLACE_TYPES:
            issues.warnings.append(f"Unknown type '{place_type}'")

        rating = doc.get("rating")
        if rating is not None and not 0 <= rating <= 5:
            issues.errors.append(f"Rating out of range: {rating}")

        price_level = doc.get("priceLevel")
        if price_level is not None and not 0 <= price_level <= 4:
            issues.errors.append(f"Price level out of range: {price_level}")

        website = doc.get("website")
        if website:
            parsed = urlparse(website)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                issues.warnings.append(f"Invalid website: {website}")

        phone = doc.get("phone")
        if phone and not PHONE_PATTERN.match(phone):
            issues.warnings.append(f"Invalid phone: {phone}")

    def _check_address(self, doc: Dict[str, Any], issues: DocumentIssues) -> None:
        postal_code = str(doc.get("postalCode") or "")
        if postal_code and postal_code not in POSTAL_CODE_COMMUNES:
            issues.warnings.append(f"Postal code {postal_code} is not a Brussels code")
        if not doc.get("searchTerms"):
            issues.warnings.append("Missing searchTerms")

    def validate_document(self, doc_id: str, doc: Dict[str, Any]) -> DocumentIssues:
        """
        Validate a single document.

        Args:
            doc_id: Firestore document id
            doc: Document body

        Returns:
            DocumentIssues listing errors and warnings
        """
        issues = DocumentIssues(doc_id=doc_id)
        for field_name in REQUIRED_FIELDS[self.data_type]:
            if doc.get(field_name) in (None, ""):
                issues.errors.append(f"Missing required field '{field_name}'")

        if doc.get("location"):
            self._check_location(doc, issues)

        if self.data_type == DataType.DOG_PLACES:
            self._check_place(doc, issues)
        else:
            self._check_address(doc, issues)
        return issues

    def find_duplicates(
        self, documents: List[Tuple[str, Dict[str, Any]]]
    ) -> List[Tuple[str, str]]:
        """
        Addresses are duplicates when their full address matches. Places are
        duplicates when they sit within the same ~100m cell and have similar names.
        """
        duplicates: List[Tuple[str, str]] = []
        if self.data_type == DataType.ADDRESSES:
            seen: Dict[str, str] = {}
            for doc_id, doc in documents:
                key = (doc.get("fullAddress") or "").strip().lower()
                if not key:
                    continue
                if key in seen:
                    duplicates.append((seen[key], doc_id))
                else:
                    seen[key] = doc_id
            return duplicates

        cells: Dict[str, List[Tuple[str, str]]] = defaultdict(list)
        for doc_id, doc in documents:
            location = doc.get("location") or {}
            latitude, longitude = location.get("latitude"), location.get("longitude")
            if latitude is None or longitude is None:
                continue
            cell = f"{round(latitude, 3)},{round(longitude, 3)}"
            for other_id, other_name in cells[cell]:
                if names_similar(other_name, doc.get("name", "")):
                    duplicates.append((other_id, doc_id))
                    break
            cells[cell].append((doc_id, doc.get("name", "")))
        return duplicates

    def validate(self, documents: Iterable[Tuple[str, Dict[str, Any]]]) -> ValidationReport:
        """
        Validate a whole collection.

        Args:
            documents: (document id, document body) pairs

        Returns:
            The ValidationReport
        """
        docs = list(documents)
        report = ValidationReport(data_type=self.data_type, total=len(docs))
        categories: Counter = Counter()
        sources: Counter = Counter()
        ratings: Counter = Counter()

        for doc_id, doc in docs:
            issues = self.validate_document(doc_id, doc)
            if issues.errors:
                report.invalid += 1
            else:
                report.valid += 1
            if issues.errors or issues.warnings:
                report.issues.append(issues)

            sources[doc.get("source") or "unknown"] += 1
            if self.data_type == DataType.DOG_PLACES:
                categories[doc.get("type") or "unknown"] += 1
                ratings[rating_bucket(doc.get("rating"))] += 1
            else:
                categories[doc.get("commune") or "unknown"] += 1

        report.duplicates = self.find_duplicates(docs)
        report.by_category = dict(categories)
        report.by_source = dict(sources)
        report.ratings = dict(ratings)

        logger.info(
            f"Validated {report.total} {self.data_type.value} documents: "
            f"{report.valid} valid, {report.invalid} invalid, "
            f"{report.warning_count} warnings, {len(report.duplicates)} duplicates"
        )
        return report
