"""
Interfaces of the outside services a layer record depends on.

The rendering engine's layer object, attribute loading, symbology rendering,
identify/query execution and the map view all live outside this package.
Records only see them through the protocols below, bundled per record in a
LayerServices instance.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, runtime_checkable

from .models import AttributeSet, IdentifyHit, IdentifyOptions, LayerData, ScaleSet, SymbologyItem


@runtime_checkable
class RemoteLayer(Protocol):
    """The engine-side layer handle."""

    id: str
    url: str
    visible: bool
    opacity: float
    min_scale: float
    max_scale: float
    layer_infos: list
    visible_layers: list[int]
    supports_dynamic_layers: bool

    async def load(self) -> None: ...

    def set_visibility(self, value: bool) -> None: ...

    def set_opacity(self, value: float) -> None: ...

    def set_visible_layers(self, layer_ids: list[int]) -> None: ...


class AttributeSource(Protocol):
    """Lazily fetched attribute data for one layer index."""

    async def get_layer_data(self) -> LayerData: ...

    async def get_attribs(self) -> AttributeSet: ...


class AttributeBundle(Protocol):
    """Attribute sources keyed by the indices the service reports."""

    indexes: list[int]

    def __getitem__(self, index: int) -> AttributeSource: ...


class AttributeLoader(Protocol):
    async def load_layer_attribs(self, layer: RemoteLayer) -> AttributeBundle: ...


class LegendSource(Protocol):
    async def map_server_to_local_legend(self, url: str, index: int) -> dict: ...


class SymbologyService(Protocol):
    """Turns renderers and legend images into symbology icons."""

    def renderer_to_legend(self, renderer: Any, index: int) -> dict: ...

    def get_graphic_icon(self, attributes: dict, renderer: Any) -> str: ...

    async def generate_wms_symbology(self, name: str, image_uri: str) -> SymbologyItem: ...


class FeatureCounter(Protocol):
    async def get_feature_count(self, url: str) -> int: ...


class IdentifyService(Protocol):
    async def server_layer_identify(self, layer: RemoteLayer, options: IdentifyOptions) -> list[IdentifyHit]: ...

    async def query_features(self, layer: RemoteLayer, options: IdentifyOptions) -> list[dict]: ...


class OgcService(Protocol):
    def get_legend_urls(self, layer: RemoteLayer, layer_ids: list[str]) -> list[str]: ...


class MapView(Protocol):
    async def zoom_to_extent(self, extent: Any) -> None: ...

    async def zoom_to_scale_set(self, scale_set: ScaleSet, zoom_in: Optional[bool] = None) -> float: ...


@dataclass
class SimpleAttributeBundle:
    """AttributeBundle backed by a plain dict."""

    sources: dict[int, Any] = field(default_factory=dict)

    @property
    def indexes(self) -> list[int]:
        return list(self.sources.keys())

    def __getitem__(self, index: int) -> AttributeSource:
        return self.sources[index]


@dataclass
class LayerServices:
    """Everything a record needs from the outside world."""

    attribs: Optional[AttributeLoader] = None
    legend: Optional[LegendSource] = None
    symbology: Optional[SymbologyService] = None
    feature_counter: Optional[FeatureCounter] = None
    identify: Optional[IdentifyService] = None
    ogc: Optional[OgcService] = None
