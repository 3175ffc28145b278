"""
Shared library: schemas, provider adapters, persistence and utilities.
"""
