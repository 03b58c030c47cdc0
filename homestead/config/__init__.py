"""Manifest loading and validation."""
from homestead.config.loader import ManifestLoader, load_manifest
from homestead.models.errors import ValidationError

__all__ = ['ManifestLoader', 'ValidationError', 'load_manifest']
