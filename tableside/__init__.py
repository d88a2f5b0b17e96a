"""
                Tableside Ordering Service

Order lifecycle and billing backend for a voice-driven, table-service
restaurant: cart merging, kitchen item tracking and bill reconciliation.
"""

__version__ = "1.0.0"
