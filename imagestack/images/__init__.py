"""Image store module.

This module handles:
- Reading tags and layer digests from an OCI image layout
- Delegating unpack/repack and image creation to umoci
"""

from imagestack.images.layout import OciTagStore, TagStore
from imagestack.images.umoci import Umoci

__all__ = ["OciTagStore", "TagStore", "Umoci"]
