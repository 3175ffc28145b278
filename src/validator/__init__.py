"""
Validation reports for the stored address and dog place collections.
"""

from .service import CollectionValidator, ValidationReport
