"""
In-memory stand-ins for the outside services layer records talk to.
"""

import asyncio
from typing import Optional

import pytest

from services.layer_records.collaborators import LayerServices, SimpleAttributeBundle
from services.layer_records.config import LayerRecordSettings
from services.layer_records.models import (
    AttributeSet,
    FieldInfo,
    IdentifyHit,
    LayerData,
    SubLayerInfo,
    SymbologyItem,
)


class FakeRemoteLayer:
    """Engine layer handle that records what was applied to it."""

    def __init__(self, url: str = "https://maps.example.com/MapServer", layer_infos=None, fail_load: bool = False):
        self.id = "fake-layer"
        self.url = url
        self.visible = True
        self.opacity = 1.0
        self.min_scale = 0
        self.max_scale = 0
        self.layer_infos = layer_infos or []
        self.visible_layers: list[int] = []
        self.visible_layer_calls: list[list[int]] = []
        self.supports_dynamic_layers = True
        self.graphics: list = []
        self.fail_load = fail_load
        self.load_calls = 0

    async def load(self):
        self.load_calls += 1
        if self.fail_load:
            raise ConnectionError("service unavailable")

    def set_visibility(self, value: bool):
        self.visible = value

    def set_opacity(self, value: float):
        self.opacity = value

    def set_visible_layers(self, layer_ids: list[int]):
        self.visible_layers = list(layer_ids)
        self.visible_layer_calls.append(list(layer_ids))


class FakeAttributeSource:
    """Attribute source whose fetches can be held back with an event."""

    def __init__(self, layer_data: LayerData, rows: Optional[list[dict]] = None, gate: Optional[asyncio.Event] = None):
        self.layer_data = layer_data
        self.rows = rows or []
        self.gate = gate
        self.layer_data_calls = 0

    async def get_layer_data(self) -> LayerData:
        self.layer_data_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        return self.layer_data

    async def get_attribs(self) -> AttributeSet:
        if self.gate is not None:
            await self.gate.wait()
        return AttributeSet.from_rows(self.rows, self.layer_data.oid_field)


class FakeAttributeLoader:
    def __init__(self, sources: dict, gate: Optional[asyncio.Event] = None):
        self.sources = sources
        self.gate = gate
        self.started = asyncio.Event()

    async def load_layer_attribs(self, layer):
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        return SimpleAttributeBundle(self.sources)


class FakeLegendSource:
    def __init__(self):
        self.requests: list[tuple] = []

    async def map_server_to_local_legend(self, url: str, index: int) -> dict:
        self.requests.append((url, index))
        return {"layers": [{"layerId": index, "legend": [{"label": f"Legend {index}", "svgcode": "<svg>legend</svg>"}]}]}


class FakeSymbology:
    def renderer_to_legend(self, renderer, index: int) -> dict:
        return {"layers": [{"legend": [{"label": f"{renderer} class", "svgcode": "<svg>renderer</svg>"}]}]}

    def get_graphic_icon(self, attributes: dict, renderer) -> str:
        return f"<svg>{renderer}</svg>"

    async def generate_wms_symbology(self, name: str, image_uri: str) -> SymbologyItem:
        return SymbologyItem(name=name, svgcode=f"<svg>{image_uri}</svg>")


class FakeFeatureCounter:
    def __init__(self, count: int = 42, gate: Optional[asyncio.Event] = None, error: Optional[Exception] = None):
        self.count = count
        self.gate = gate
        self.error = error
        self.urls: list[str] = []

    async def get_feature_count(self, url: str) -> int:
        self.urls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.count


class FakeIdentify:
    def __init__(self, hits: Optional[list[IdentifyHit]] = None, features: Optional[list[dict]] = None):
        self.hits = hits or []
        self.features = features or []
        self.options = None

    async def server_layer_identify(self, layer, options):
        self.options = options
        return self.hits

    async def query_features(self, layer, options):
        self.options = options
        return self.features


class FakeOgc:
    def get_legend_urls(self, layer, layer_ids):
        return [f"https://wms.example.com/legend?layer={layer_id}" for layer_id in layer_ids]


class FakeMapView:
    def __init__(self):
        self.extents = []
        self.scale_sets = []

    async def zoom_to_extent(self, extent):
        self.extents.append(extent)

    async def zoom_to_scale_set(self, scale_set, zoom_in=None):
        self.scale_sets.append((scale_set, zoom_in))
        return scale_set.max_scale or scale_set.min_scale


def make_feature_data(geometry_type: str = "esriGeometryPolygon", min_scale: float = 0, max_scale: float = 0) -> LayerData:
    return LayerData(
        layer_type="Feature Layer",
        geometry_type=geometry_type,
        fields=[
            FieldInfo(name="OBJECTID", type="esriFieldTypeOID", alias="Object ID"),
            FieldInfo(name="NAME", type="esriFieldTypeString", alias="Parcel Name"),
            FieldInfo(name="SURVEYED", type="esriFieldTypeDate", alias="Survey Date"),
        ],
        renderer="parcels",
        oid_field="OBJECTID",
        min_scale=min_scale,
        max_scale=max_scale,
    )


PARCEL_ROWS = [
    {"OBJECTID": 1, "NAME": "North lot", "SURVEYED": 1577836800000},
    {"OBJECTID": 2, "NAME": "South lot", "SURVEYED": 1609459200000},
]


@pytest.fixture
def settings():
    return LayerRecordSettings(click_tolerance=7, request_timeout_seconds=5, max_concurrency=4)


@pytest.fixture
def nested_layer_infos():
    """Service hierarchy: 1 -> [2, 3], 3 -> [4]."""
    return [
        SubLayerInfo(id=1, name="Land Use", sub_layer_ids=[2, 3]),
        SubLayerInfo(id=2, name="Parcels", parent_layer_id=1),
        SubLayerInfo(id=3, name="Zoning", sub_layer_ids=[4], parent_layer_id=1),
        SubLayerInfo(id=4, name="Zoning Districts", parent_layer_id=3),
    ]


@pytest.fixture
def services():
    """Services for a service reporting leaves 2 and 4."""
    return LayerServices(
        attribs=FakeAttributeLoader({
            2: FakeAttributeSource(make_feature_data(), PARCEL_ROWS),
            4: FakeAttributeSource(make_feature_data("esriGeometryPolyline", min_scale=50000, max_scale=1000)),
        }),
        legend=FakeLegendSource(),
        symbology=FakeSymbology(),
        feature_counter=FakeFeatureCounter(),
        identify=FakeIdentify(),
        ogc=FakeOgc(),
    )
