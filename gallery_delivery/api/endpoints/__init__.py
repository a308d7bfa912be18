"""Typed endpoint functions over AsyncHttpClient."""

from gallery_delivery.api.endpoints.assets import download_photo
from gallery_delivery.api.endpoints.oauth import refresh_access_token

__all__ = ["download_photo", "refresh_access_token"]
