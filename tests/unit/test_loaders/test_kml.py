"""Tests for the streaming KML boundary parser."""

import io
import xml.etree.ElementTree as ET

import pytest
from core.models import Coordinate
from core.sample_data import SAMPLE_KML
from loaders.kml import (
    DocumentIOError, KMLBoundaryParser, MalformedDocumentError, _ParserState, parse_coordinates,
    parse_kml_file
)

RING = "-122.42,37.78 -122.40,37.78 -122.40,37.76 -122.42,37.76 -122.42,37.78"


def _kml(body: str, namespace: bool = True) -> bytes:
    xmlns = ' xmlns="http://www.opengis.net/kml/2.2"' if namespace else ""
    return (f'<?xml version="1.0" encoding="UTF-8"?>\n'
            f'<kml{xmlns}><Document><name>Doc</name>{body}</Document></kml>').encode("utf-8")


def _placemark(name: str = "", polygon: str = "", extra: str = "") -> str:
    name_tag = f"<name>{name}</name>" if name else ""
    return f"<Placemark>{name_tag}{extra}<Polygon>{polygon}</Polygon></Placemark>"


def _outer(coords: str = RING) -> str:
    return f"<outerBoundaryIs><LinearRing><coordinates>{coords}</coordinates></LinearRing></outerBoundaryIs>"


def _inner(coords: str = RING) -> str:
    return f"<innerBoundaryIs><LinearRing><coordinates>{coords}</coordinates></LinearRing></innerBoundaryIs>"


def _bare(coords: str = RING) -> str:
    return f"<LinearRing><coordinates>{coords}</coordinates></LinearRing>"


def _parse(data: bytes, **kwargs):
    return KMLBoundaryParser(**kwargs).parse(io.BytesIO(data))


class TestParseCoordinates:
    """Tests for coordinate-list tokenizing."""

    def test_lng_lat_order_is_swapped(self):
        coords = parse_coordinates("-122.42,37.78")
        assert coords == [Coordinate(latitude=37.78, longitude=-122.42)]

    def test_altitude_ignored(self):
        coords = parse_coordinates("-122.42,37.78,120.5 -122.40,37.76,0")
        assert coords == [Coordinate(37.78, -122.42), Coordinate(37.76, -122.40)]

    def test_whitespace_and_newlines(self):
        coords = parse_coordinates("\n   -1,1\n\t\t-2,2   \n\n  -3,3  ")
        assert [c.latitude for c in coords] == [1, 2, 3]

    def test_malformed_tuples_dropped(self):
        coords = parse_coordinates("-122.42, abc,1 1 1,2,3 nan,5 5,inf -1,1")
        assert coords == [Coordinate(2, 1), Coordinate(1, -1)]

    def test_empty_fields_skipped(self):
        coords = parse_coordinates("-122.42,,37.78 ,-122.40,37.76")
        assert coords == [Coordinate(37.78, -122.42), Coordinate(37.76, -122.40)]

    def test_empty(self):
        assert parse_coordinates("") == []
        assert parse_coordinates("   \n ") == []


class TestKMLBoundaryParser:
    """Tests for zone emission."""

    def test_sample_document(self):
        """One Placemark with an outer ring of five vertices and one attribute."""
        zones = _parse(SAMPLE_KML.encode("utf-8"))

        assert len(zones) == 1
        zone = zones[0]
        assert zone.name == "Test Shape 1"
        assert zone.attributes["zoneType"] == "Residential"
        assert zone.attributes["description"] == "This is test shape 1"
        assert zone.vertex_count == 5
        assert zone.boundary[0] == Coordinate(37.78, -122.42)
        assert zone.boundary[1] == Coordinate(37.78, -122.40)
        assert zone.boundary[2] == Coordinate(37.76, -122.40)
        assert zone.boundary[4] == zone.boundary[0]

    def test_malformed_tuple_shortens_ring(self):
        coords = "-122.42, -122.40,37.78 -122.40,37.76 -122.42,37.76 -122.42,37.78"
        zones = _parse(_kml(_placemark("Short", _outer(coords))))

        assert len(zones) == 1
        assert zones[0].vertex_count == 4

    def test_outer_and_inner_emit_once_each(self):
        """Boundary wrappers suppress the bare-ring emission."""
        zones = _parse(_kml(_placemark("Park", _outer() + _inner())))
        assert [z.name for z in zones] == ["Park", "Park - Inner"]

    def test_unnamed_placeholders(self):
        zones = _parse(_kml(_placemark("", _outer() + _inner()) + _placemark("", _bare())))
        assert [z.name for z in zones] == ["Outer Boundary 0", "Inner Boundary 1", "Polygon 2"]

    def test_bare_ring_under_polygon(self):
        zones = _parse(_kml(_placemark("Bare", _bare())))
        assert [z.name for z in zones] == ["Bare"]
        assert zones[0].vertex_count == 5

    def test_ring_outside_polygon_ignored(self):
        body = f"<Placemark><name>Line</name>{_bare()}</Placemark>"
        assert _parse(_kml(body)) == []

    def test_empty_ring_not_emitted(self):
        zones = _parse(_kml(_placemark("Empty", _outer("  bad,  ,x ")) + _placemark("Ok", _outer())))
        assert [z.name for z in zones] == ["Ok"]

    def test_degenerate_ring_still_emitted(self):
        zones = _parse(_kml(_placemark("Tiny", _outer("0,0 1,1"))))
        assert len(zones) == 1
        assert zones[0].is_degenerate

    def test_namespaced_and_plain_documents_match(self):
        body = _placemark("Zone", _outer(), extra='<ExtendedData><Data name="k"><value>v</value></Data></ExtendedData>')
        assert _parse(_kml(body, namespace=True)) == _parse(_kml(body, namespace=False))

    def test_attributes_reset_per_placemark(self):
        first = _placemark("A", _outer(), extra='<ExtendedData><Data name="k"><value>v</value></Data></ExtendedData>')
        second = _placemark("B", _outer())
        zones = _parse(_kml(first + second))

        assert dict(zones[0].attributes) == {"k": "v"}
        assert dict(zones[1].attributes) == {}

    def test_extended_data_with_display_name(self):
        extra = ('<ExtendedData>'
                 '<Data name="zoneType"><displayName>Zone Type</displayName><value>Commercial</value></Data>'
                 '<Data name="density"><value>High</value></Data>'
                 '</ExtendedData>')
        zones = _parse(_kml(_placemark("A", _outer(), extra=extra)))
        assert dict(zones[0].attributes) == {"zoneType": "Commercial", "density": "High"}

    def test_value_outside_extended_data_ignored(self):
        extra = '<Data name="k"><value>v</value></Data>'
        zones = _parse(_kml(_placemark("A", _outer(), extra=extra)))
        assert dict(zones[0].attributes) == {}

    def test_cdata_description(self):
        extra = "<description><![CDATA[<b>Central</b> district]]></description>"
        zones = _parse(_kml(_placemark("A", _outer(), extra=extra)))
        assert zones[0].attributes["description"] == "<b>Central</b> district"

    def test_empty_description_not_stored(self):
        zones = _parse(_kml(_placemark("A", _outer(), extra="<description></description>")))
        assert "description" not in zones[0].attributes

    def test_document_name_not_used(self):
        zones = _parse(_kml(_placemark("", _outer())))
        assert zones[0].name == "Outer Boundary 0"

    def test_deterministic(self):
        data = _kml("".join(_placemark(f"Z{i}", _outer() + _inner()) for i in range(20)))
        first = _parse(data)
        second = _parse(data)

        assert len(first) == len(second) == 40
        assert first == second
        assert [z.boundary for z in first] == [z.boundary for z in second]

    def test_parse_from_path(self, tmp_path):
        path = tmp_path / "test.kml"
        path.write_text(SAMPLE_KML, encoding="utf-8")

        zones = parse_kml_file(str(path))
        assert [z.name for z in zones] == ["Test Shape 1"]
        assert parse_kml_file(path) == zones

    def test_small_chunks(self):
        data = _kml("".join(_placemark(f"Z{i}", _outer()) for i in range(5)))
        zones = _parse(data, chunk_size=7)
        assert [z.name for z in zones] == [f"Z{i}" for i in range(5)]

    def test_iter_zones_is_incremental(self):
        data = _kml(_placemark("A", _outer()) + _placemark("B", _outer()))
        iterator = KMLBoundaryParser(chunk_size=16).iter_zones(io.BytesIO(data))
        assert next(iterator).name == "A"
        assert next(iterator).name == "B"
        with pytest.raises(StopIteration):
            next(iterator)


class TestProgress:
    """Tests for progress notifications."""

    def test_progress_every_interval(self):
        data = _kml("".join(_placemark(f"Z{i}", _bare()) for i in range(120)))
        calls = []
        zones = KMLBoundaryParser(chunk_size=512).parse(
            io.BytesIO(data), progress_callback=lambda f, n: calls.append((f, n))
        )

        assert len(zones) == 120
        assert [n for _, n in calls] == [50, 100]
        fractions = [f for f, _ in calls]
        assert fractions == sorted(fractions)
        assert all(0.0 < f <= 1.0 for f in fractions)

    def test_custom_interval(self):
        data = _kml("".join(_placemark(f"Z{i}", _outer()) for i in range(6)))
        counts = []
        KMLBoundaryParser(progress_interval=2).parse(
            io.BytesIO(data), progress_callback=lambda f, n: counts.append(n)
        )
        assert counts == [2, 4, 6]


class TestFailures:
    """Tests for all-or-nothing failure handling."""

    def test_unbalanced_tags(self):
        data = _kml(_placemark("A", _outer())).replace(b"</Document>", b"")
        with pytest.raises(MalformedDocumentError) as exc_info:
            _parse(data)
        assert exc_info.value.line is not None

    def test_failure_after_valid_zones_returns_nothing(self):
        valid = "".join(_placemark(f"Z{i}", _outer()) for i in range(60))
        data = _kml(valid + "<Placemark><name>broken</Placemark>")
        progress = []

        zones = None
        with pytest.raises(MalformedDocumentError):
            zones = KMLBoundaryParser().parse(
                io.BytesIO(data), progress_callback=lambda f, n: progress.append(n)
            )
        assert zones is None

    def test_empty_document(self):
        with pytest.raises(MalformedDocumentError):
            _parse(b"")

    def test_invalid_encoding(self):
        data = b'<?xml version="1.0" encoding="UTF-8"?><kml><name>\xff\xfe</name></kml>'
        with pytest.raises(MalformedDocumentError):
            _parse(data)

    def test_missing_file(self, tmp_path):
        with pytest.raises(DocumentIOError):
            parse_kml_file(str(tmp_path / "missing.kml"))

    def test_unknown_encoding(self):
        data = b'<?xml version="1.0" encoding="no-such-codec"?><kml><Document/></kml>'
        with pytest.raises(MalformedDocumentError):
            _parse(data)

    def test_closed_stream(self):
        stream = io.BytesIO(SAMPLE_KML.encode("utf-8"))
        stream.close()
        with pytest.raises(DocumentIOError):
            KMLBoundaryParser().parse(stream)


class TestElementRelease:
    """Tests that finished elements are detached while parsing."""

    def _drain(self, data: bytes):
        pull = ET.XMLPullParser(events=("start", "end"))
        pull.feed(data)
        open_elements = []
        zones = list(KMLBoundaryParser()._drain(pull, _ParserState(), open_elements))
        return zones, open_elements

    def test_finished_children_inside_open_placemark_are_released(self):
        zones, open_elements = self._drain(
            b"<kml><Document><Placemark><name>A</name><description>d</description>"
            + _outer().encode("utf-8")
        )
        placemark = open_elements[-1]
        assert placemark.tag == "Placemark"
        assert len(placemark) == 0
        assert [z.name for z in zones] == ["A"]

    def test_closed_placemark_is_released(self):
        zones, open_elements = self._drain(
            b"<kml><Document>" + _placemark("A", _outer()).encode("utf-8")
        )
        assert [e.tag for e in open_elements] == ["kml", "Document"]
        assert len(open_elements[-1]) == 0
        assert len(zones) == 1

    def test_description_keeps_inline_markup_text(self):
        extra = "<description>Central <b>core</b> district</description>"
        zones = _parse(_kml(_placemark("A", _outer(), extra=extra)))
        assert zones[0].attributes["description"] == "Central core district"
