# backend/listing_media/__init__.py
"""Listing Media - capture-to-delivery media pipeline for real-estate listings."""

__version__ = "1.0.0"
__title__ = "Listing Media"
__description__ = "Stage-based media pipeline and retention cleanup over object storage"
