"""
Source adapters and the Firestore persistence adapter.
"""
