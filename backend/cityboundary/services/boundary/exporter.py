"""GeoJSON export of boundary geometries."""

import json
import logging
import os
import unicodedata
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

from cityboundary.core.exceptions import ExportFailure

logger = logging.getLogger(__name__)

GEOJSON_MEDIA_TYPE = "application/geo+json"


@dataclass(frozen=True)
class GeoJSONExport:
    filename: str
    content: bytes
    media_type: str = GEOJSON_MEDIA_TYPE

    @property
    def content_disposition(self) -> str:
        """
        Attachment header safe for latin-1 transport.

        Non-ASCII names get an ASCII `filename` fallback plus an RFC 5987
        `filename*` carrying the UTF-8 name.
        """
        name = self.filename.replace('"', "").replace("\r", "").replace("\n", "")
        fallback = ascii_filename(name)
        if fallback == name:
            return f'attachment; filename="{name}"'
        return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(name, safe='')}"


def ascii_filename(name: str, default_stem: str = "boundary") -> str:
    """Strip accents and drop other non-ASCII characters, e.g. "São Paulo.geojson" -> "Sao Paulo.geojson"."""
    stem, ext = (
        unicodedata.normalize("NFKD", part).encode("ascii", "ignore").decode("ascii")
        for part in os.path.splitext(name)
    )
    if not stem.strip(" ._-"):
        stem = default_stem
    return f"{stem}{ext}"


def export_geometry(geometry: Any, filename: str) -> GeoJSONExport:
    """
    Serialize a geometry as an indented GeoJSON download.

    A missing geometry exports as the literal ``null``. No validation is done
    beyond JSON-serializability.

    Raises:
        ExportFailure: If the geometry cannot be serialized (nothing is produced)
    """
    try:
        payload = json.dumps(geometry, indent=2, allow_nan=False)
    except (TypeError, ValueError) as e:
        logger.error(f"Failed to export geometry to {filename}: {str(e)}")
        raise ExportFailure(f"Geometry is not JSON-serializable: {str(e)}") from e

    return GeoJSONExport(filename=filename, content=payload.encode("utf-8"))
