"""
Built-in sample zones for demos and smoke tests.
"""

from typing import List

from core.models import Zone, coordinates_from_pairs


SAMPLE_KML = """<?xml version="1.0" encoding="UTF-8"?>
<kml xmlns="http://www.opengis.net/kml/2.2">
  <Document>
    <Placemark>
      <name>Test Shape 1</name>
      <description>This is test shape 1</description>
      <ExtendedData>
        <Data name="zoneType">
          <value>Residential</value>
        </Data>
      </ExtendedData>
      <Polygon>
        <outerBoundaryIs>
          <LinearRing>
            <coordinates>
              -122.42,37.78 -122.40,37.78 -122.40,37.76 -122.42,37.76 -122.42,37.78
            </coordinates>
          </LinearRing>
        </outerBoundaryIs>
      </Polygon>
    </Placemark>
  </Document>
</kml>
"""


def get_sample_zones() -> List[Zone]:
    """Two approximate San Francisco neighborhoods."""
    return [
        Zone(
            name="Downtown SF",
            attributes={
                "description": "Downtown San Francisco area",
                "zoneType": "Commercial",
                "density": "High",
            },
            boundary=coordinates_from_pairs([
                (37.789, -122.419),
                (37.789, -122.399),
                (37.769, -122.399),
                (37.769, -122.419),
                (37.789, -122.419),
            ]),
        ),
        Zone(
            name="Mission District",
            attributes={
                "description": "Mission District area",
                "zoneType": "Mixed Use",
                "density": "Medium",
            },
            boundary=coordinates_from_pairs([
                (37.765, -122.430),
                (37.765, -122.400),
                (37.748, -122.400),
                (37.748, -122.430),
                (37.765, -122.430),
            ]),
        ),
    ]
