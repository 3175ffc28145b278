"""
Validate a Firestore collection and print a report.

    python -m validator.app dogPlaces --strict
"""

import argparse
import json
import sys
from typing import List, Optional

from shared.services.firestore_service import FirestoreService
from shared.utils.errors import PersistenceError
from shared.utils.helpers import DataEncoder
from shared.utils.logger import logger
from shared.utils.types import DataType

from .service import CollectionValidator, ValidationReport


def run_validation(data_type: DataType, firestore: Optional[FirestoreService] = None) -> ValidationReport:
    firestore = firestore or FirestoreService()
    validator = CollectionValidator(data_type)
    return validator.validate(firestore.stream_collection(data_type))


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Validate a Firestore collection")
    parser.add_argument(
        "data_type",
        choices=[data_type.value for data_type in DataType],
        help="Collection to validate",
    )
    parser.add_argument(
        "--strict", action="store_true", help="Exit with 1 if any document is invalid"
    )
    parser.add_argument(
        "--show-issues", type=int, default=20, help="Number of documents with issues to print"
    )
    args = parser.parse_args(argv)

    try:
        report = run_validation(DataType(args.data_type))
    except PersistenceError as e:
        logger.error(f"Validation failed: {e.message}")
        return 1

    output = {
        "summary": report.summary(),
        "issues": report.issues[: args.show_issues],
        "duplicates": report.duplicates[: args.show_issues],
    }
    print(json.dumps(output, cls=DataEncoder, indent=2, ensure_ascii=False))

    if args.strict and report.invalid:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
