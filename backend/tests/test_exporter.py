import json

import pytest

from cityboundary.core.exceptions import ExportFailure
from cityboundary.services.boundary.exporter import GEOJSON_MEDIA_TYPE, export_geometry
from conftest import square


def test_export_is_indented_geojson():
    geometry = square(-58.5, -34.7)
    export = export_geometry(geometry, "buenos-aires.geojson")

    assert export.media_type == GEOJSON_MEDIA_TYPE
    assert export.content.startswith(b'{\n  "type": "Polygon"')
    assert json.loads(export.content) == geometry
    assert export.content_disposition == 'attachment; filename="buenos-aires.geojson"'


def test_missing_geometry_exports_null():
    assert export_geometry(None, "empty.geojson").content == b"null"


def test_filename_is_sanitized_in_header():
    export = export_geometry(square(0, 0), 'bad"name\r\n.geojson')
    assert export.content_disposition == 'attachment; filename="badname.geojson"'


@pytest.mark.parametrize(
    "geometry",
    [
        {"type": "Point", "coordinates": [float("nan"), 0]},
        {"type": "Point", "coordinates": [object(), 0]},
    ],
)
def test_unserializable_geometry_raises(geometry):
    with pytest.raises(ExportFailure):
        export_geometry(geometry, "broken.geojson")


def test_non_ascii_filename_gets_ascii_fallback():
    export = export_geometry(square(37.3, 55.5), "Москва.geojson")
    header = export.content_disposition

    header.encode("latin-1")
    assert header == (
        'attachment; filename="boundary.geojson"; '
        "filename*=UTF-8''%D0%9C%D0%BE%D1%81%D0%BA%D0%B2%D0%B0.geojson"
    )


def test_accented_filename_keeps_its_letters():
    export = export_geometry(square(-46.6, -23.5), "São Paulo.geojson")
    assert export.content_disposition.startswith('attachment; filename="Sao Paulo.geojson"; filename*=UTF-8\'\'')
    assert "S%C3%A3o%20Paulo.geojson" in export.content_disposition
