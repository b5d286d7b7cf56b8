"""
Feature classes - per sub-layer state.

A feature class holds what is known about one resolvable unit of a layer:
a flat layer, or one leaf of a grouped map service. The family is closed:

- PlaceholderFC: stand-in used before real data exists
- BasicFC: raster, tile and image layers (legend comes from the server)
- AttribFC: layers with tabular attributes
- DynamicFC: one leaf of a dynamic map service
- WmsFC: WMS layers, legend matched by name against the service catalog

create_feature_class() picks the flavour from a FeatureClassKind.
"""

import asyncio
import logging
from typing import Any, Optional

from constants.layer_constants import DATE_FIELD_TYPE, SERVER_FEATURE_LAYER
from utils.error_handlers import LayerStructureError, UnsupportedOperationError
from utils.parallel import parallel_execute

from .models import (
    AttributeSet,
    ClientLayerType,
    FeatureClassKind,
    FieldInfo,
    LayerData,
    ScaleSet,
    ScaleVisibility,
    SymbologyItem,
    WmsLayerInfo,
    ZoomDirection,
)

logger = logging.getLogger(__name__)


def compute_scale_visibility(scale_set: ScaleSet, current_scale: float) -> ScaleVisibility:
    """
    Check a scale against a scale set.

    A 0 bound means no limit on that side.
    """
    if current_scale < scale_set.max_scale and scale_set.max_scale != 0:
        return ScaleVisibility(off_scale=True, zoom_direction=ZoomDirection.IN)
    if current_scale > scale_set.min_scale and scale_set.min_scale != 0:
        return ScaleVisibility(off_scale=True, zoom_direction=ZoomDirection.OUT)
    return ScaleVisibility()


def make_symbology_array(legend_items: list[dict]) -> list[SymbologyItem]:
    """Convert local-format legend entries into symbology items."""
    return [
        SymbologyItem(name=item.get("label", ""), svgcode=item.get("svgcode"))
        for item in legend_items
    ]


def get_wms_layer_title(layer_infos: list[WmsLayerInfo], wms_layer_id: str) -> str:
    """
    Find the title the service gives a WMS layer.

    Searches the nested layer catalog depth first, in pre-order, and stops at
    the first layer whose name matches. Returns '' when nothing matches or the
    match has no title.
    """
    def crawl(infos: list[WmsLayerInfo]) -> Optional[WmsLayerInfo]:
        for info in infos:
            # wms ids are stored in .name
            if info.name == wms_layer_id:
                return info
            if info.sub_layers:
                match = crawl(info.sub_layers)
                if match is not None:
                    return match
        return None

    match = crawl(layer_infos or [])
    if match is not None and match.title:
        return match.title
    return ""


def _entry_state(config):
    state = getattr(config, "effective_state", None)
    return state if state is not None else config.state


class FeatureClass:
    """Shared capability interface of every feature class flavour."""

    kind: FeatureClassKind = FeatureClassKind.BASIC

    def __init__(self, parent, index: int, config=None, name: str = ""):
        """
        Args:
            parent: the layer record this feature class belongs to
            index: service index of this feature class, 0 for non-indexed sources
            config: LayerConfig or LayerEntryConfig for this unit
            name: fallback name when the config has none
        """
        self._parent = parent
        self.index = index
        self.name = (getattr(config, "name", None) or name) if config is not None else name
        self.symbology: list[SymbologyItem] = []
        self.extent = getattr(config, "extent", None)
        self._queryable = _entry_state(config).query if config is not None else False
        self._scale_set: Optional[ScaleSet] = None

    @property
    def queryable(self) -> bool:
        return self._queryable

    @queryable.setter
    def queryable(self, value: bool):
        self._queryable = value

    @property
    def state(self):
        return self._parent.state

    @property
    def layer_type(self) -> Optional[ClientLayerType]:
        return self._parent.layer_type

    @property
    def geom_type(self) -> Optional[str]:
        # non-attribute layers have no geometry
        return "none"

    @property
    def scale_set(self) -> ScaleSet:
        """Last fetched scale set, or the parent layer's bounds."""
        if self._scale_set is not None:
            return self._scale_set
        layer = self._parent.layer
        return ScaleSet(min_scale=layer.min_scale or 0, max_scale=layer.max_scale or 0)

    async def get_scale_set(self) -> ScaleSet:
        self._scale_set = self.scale_set
        return self._scale_set

    def compute_scale_visibility(self, current_scale: float) -> ScaleVisibility:
        return compute_scale_visibility(self.scale_set, current_scale)

    async def is_off_scale(self, current_scale: float) -> ScaleVisibility:
        scale_set = await self.get_scale_set()
        return compute_scale_visibility(scale_set, current_scale)

    def get_visibility(self) -> bool:
        return self._parent.visibility

    def set_visibility(self, value: bool):
        self._parent.visibility = value

    def load_symbology(self) -> Optional[asyncio.Future]:
        """
        Start downloading the symbology for this class.

        Non-feature sources (tile, image, raster) read the server legend.
        Raises LayerStructureError straight away if there is no service to
        ask, since a layer without a url should be a file-based feature layer.
        """
        url = self._parent.layer_url
        if not url:
            raise LayerStructureError(
                "encountered layer with no renderer and no url",
                {"layer_id": self._parent.layer_id, "index": self.index},
            )
        return self._parent.defer(self._load_server_legend(url), label=f"symbology {self.index}")

    async def _load_server_legend(self, url: str):
        legend = await self._parent.services.legend.map_server_to_local_legend(url, self.index)
        if self._parent.is_destroyed:
            return
        layers = legend.get("layers") or []
        self.symbology = make_symbology_array(layers[0].get("legend", [])) if layers else []

    async def zoom_to_boundary(self, map_view):
        return await self._parent.zoom_to_extent(map_view, self.extent)

    # attribute capabilities, only attributed flavours have them

    def _no_attributes(self, operation: str):
        raise UnsupportedOperationError(
            f"{operation} is not available on a {self.kind.value} feature class",
            {"index": self.index},
        )

    def get_layer_data(self) -> asyncio.Future:
        self._no_attributes("get_layer_data")

    def get_attribs(self) -> asyncio.Future:
        self._no_attributes("get_attribs")

    def get_formatted_attributes(self) -> asyncio.Future:
        self._no_attributes("get_formatted_attributes")

    async def aliased_field_name(self, attrib_name: str) -> str:
        self._no_attributes("aliased_field_name")

    async def check_date_type(self, attrib_name: str) -> bool:
        self._no_attributes("check_date_type")

    def get_feature_name(self, obj_id: Any, attribs: Optional[dict] = None) -> str:
        self._no_attributes("get_feature_name")


class PlaceholderFC(FeatureClass):
    """Data-less stand-in that answers with safe defaults."""

    kind = FeatureClassKind.PLACEHOLDER

    def __init__(self, parent, name: str = ""):
        super().__init__(parent, -1, None, name=name)

    def load_symbology(self) -> Optional[asyncio.Future]:
        return None


class BasicFC(FeatureClass):
    kind = FeatureClassKind.BASIC


class AttribFC(FeatureClass):
    """Feature class backed by tabular attribute data."""

    kind = FeatureClassKind.ATTRIBUTE

    def __init__(self, parent, index: int, layer_package, config):
        """
        Args:
            parent: the layer record this feature class belongs to
            index: service index of this feature class
            layer_package: attribute source from the attribute bundle
            config: config for this unit
        """
        super().__init__(parent, index, config)
        self._layer_package = layer_package
        self.name_field: Optional[str] = getattr(config, "name_field", None)
        self.geometry_type: Optional[str] = None
        self.feature_count: Optional[int] = None
        self._layer_data_task: Optional[asyncio.Future] = None
        self._attribs_task: Optional[asyncio.Future] = None
        self._formatted_task: Optional[asyncio.Future] = None

    @property
    def geom_type(self) -> Optional[str]:
        return self.geometry_type

    @geom_type.setter
    def geom_type(self, value: Optional[str]):
        self.geometry_type = value

    @property
    def layer_type(self) -> Optional[ClientLayerType]:
        return ClientLayerType.ESRI_FEATURE

    def get_layer_data(self) -> asyncio.Future:
        if self._layer_data_task is None:
            self._layer_data_task = asyncio.ensure_future(self._layer_package.get_layer_data())
        return self._layer_data_task

    def get_attribs(self) -> asyncio.Future:
        if self._attribs_task is None:
            self._attribs_task = asyncio.ensure_future(self._layer_package.get_attribs())
        return self._attribs_task

    def get_formatted_attributes(self) -> asyncio.Future:
        """Attribute rows shaped for a data grid. Fetched once, then shared."""
        if self._formatted_task is None:
            self._formatted_task = asyncio.ensure_future(self._format_attributes())
        return self._formatted_task

    async def _format_attributes(self) -> dict:
        attribs: AttributeSet = await self.get_attribs()
        layer_data: LayerData = await self.get_layer_data()
        columns = [{"data": f.name, "title": f.alias or f.name} for f in layer_data.fields]
        return {
            "columns": columns,
            "rows": [dict(row) for row in attribs.features],
            "fields": layer_data.fields,
            "oid_field": attribs.oid_field,
            "oid_index": attribs.oid_index,
        }

    async def aliased_field_name(self, attrib_name: str) -> str:
        """Best user-friendly name of a field: its alias, else its name."""
        layer_data: LayerData = await self.get_layer_data()
        for f in layer_data.fields:
            if f.name == attrib_name:
                return f.alias or f.name
        return attrib_name

    async def check_date_type(self, attrib_name: str) -> bool:
        layer_data: LayerData = await self.get_layer_data()
        return any(f.name == attrib_name and f.type == DATE_FIELD_TYPE for f in layer_data.fields)

    def get_feature_name(self, obj_id: Any, attribs: Optional[dict] = None) -> str:
        if self.name_field and attribs and attribs.get(self.name_field) is not None:
            return str(attribs[self.name_field])
        return f"Feature {obj_id}"

    @staticmethod
    def unalias_attribs(attribs: dict, fields: list[FieldInfo]) -> dict:
        """Re-key an attribute dict that uses field aliases by the real field names."""
        unaliased = dict(attribs)
        for f in fields:
            if f.alias and f.alias in attribs and f.alias != f.name:
                unaliased[f.name] = attribs[f.alias]
                del unaliased[f.alias]
        return unaliased

    def load_symbology(self) -> Optional[asyncio.Future]:
        return self._parent.defer(self._load_renderer_symbology(), label=f"symbology {self.index}")

    async def _load_renderer_symbology(self):
        layer_data: LayerData = await self.get_layer_data()
        if layer_data.layer_type and layer_data.layer_type != SERVER_FEATURE_LAYER:
            # rasters inside a map service have no renderer, ask the server
            url = self._parent.layer_url
            if not url:
                raise LayerStructureError(
                    "encountered layer with no renderer and no url",
                    {"layer_id": self._parent.layer_id, "index": self.index},
                )
            await self._load_server_legend(url)
            return
        legend = self._parent.services.symbology.renderer_to_legend(layer_data.renderer, self.index)
        if self._parent.is_destroyed:
            return
        layers = legend.get("layers") or []
        self.symbology = make_symbology_array(layers[0].get("legend", [])) if layers else []


class DynamicFC(AttribFC):
    """One leaf of a dynamic map service."""

    kind = FeatureClassKind.DYNAMIC_LEAF

    def __init__(self, parent, index: int, layer_package, config):
        super().__init__(parent, index, layer_package, config)
        self.opacity: float = config.effective_state.opacity
        self._layer_type: Optional[ClientLayerType] = None

    @property
    def layer_type(self) -> Optional[ClientLayerType]:
        return self._layer_type

    @layer_type.setter
    def layer_type(self, value: Optional[ClientLayerType]):
        self._layer_type = value

    async def get_scale_set(self) -> ScaleSet:
        # each leaf carries its own scale range
        layer_data: LayerData = await self.get_layer_data()
        self._scale_set = ScaleSet(min_scale=layer_data.min_scale or 0, max_scale=layer_data.max_scale or 0)
        return self._scale_set

    def get_visibility(self) -> bool:
        return self.index in self._parent.visible_layers

    def set_visibility(self, value: bool):
        visible = [idx for idx in self._parent.visible_layers if idx != self.index]
        if value:
            visible.append(self.index)
        self._parent.set_visible_layers(sorted(visible))


class WmsFC(FeatureClass):
    """WMS layer; legend images come from the service, one per configured entry."""

    kind = FeatureClassKind.WMS

    def load_symbology(self) -> Optional[asyncio.Future]:
        entries = self._parent.config.layer_entries
        layer = self._parent.layer
        image_uris = self._parent.services.ogc.get_legend_urls(layer, [entry.id for entry in entries])
        if len(image_uris) != len(entries):
            # entries without a legend url get no legend item
            logger.warning(
                f"WMS layer {self._parent.layer_id} returned {len(image_uris)} legend urls "
                f"for {len(entries)} entries"
            )

        items = []
        names = []
        for entry, image_uri in zip(entries, image_uris):
            # config specified name || server specified name || config id
            names.append(entry.name or get_wms_layer_title(layer.layer_infos, entry.id) or entry.id)
            items.append(SymbologyItem())

        # items are visible right away and filled in as images arrive
        self.symbology = items
        return self._parent.defer(
            self._fill_symbology(items, names, image_uris), label=f"wms symbology {self.index}"
        )

    async def _fill_symbology(self, items: list[SymbologyItem], names: list[str], image_uris: list[str]):
        symbology = self._parent.services.symbology
        generated = await parallel_execute(
            [symbology.generate_wms_symbology(name, uri) for name, uri in zip(names, image_uris)],
            max_concurrency=self._parent.settings.max_concurrency,
        )
        if self._parent.is_destroyed:
            logger.debug(f"Dropping WMS legend images for destroyed layer {self._parent.layer_id}")
            return
        for item, data in zip(items, generated):
            if isinstance(data, Exception):
                logger.warning(f"WMS legend image failed for {self._parent.layer_id}: {data}")
                continue
            item.name = data.name
            item.svgcode = data.svgcode


_FEATURE_CLASSES = {
    FeatureClassKind.BASIC: BasicFC,
    FeatureClassKind.ATTRIBUTE: AttribFC,
    FeatureClassKind.DYNAMIC_LEAF: DynamicFC,
    FeatureClassKind.WMS: WmsFC,
}


def create_feature_class(kind: FeatureClassKind, parent, index: int, config=None, layer_package=None, name: str = ""):
    """Build the feature class flavour for a sub-layer kind."""
    kind = FeatureClassKind(kind)
    if kind == FeatureClassKind.PLACEHOLDER:
        return PlaceholderFC(parent, name)
    cls = _FEATURE_CLASSES[kind]
    if issubclass(cls, AttribFC):
        return cls(parent, index, layer_package, config)
    return cls(parent, index, config)
