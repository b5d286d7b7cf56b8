"""
Data models for the layer records system.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from constants.layer_constants import DUMMY_SUBLAYER_STATE, WILDCARD_OUTFIELDS


# =============================================================================
# Enums
# =============================================================================

class ClientLayerType(str, Enum):
    """Layer types as understood by the client."""
    ESRI_DYNAMIC = "esriDynamic"
    ESRI_FEATURE = "esriFeature"
    ESRI_IMAGE = "esriImage"
    ESRI_TILE = "esriTile"
    ESRI_RASTER = "esriRaster"
    OGC_WMS = "ogcWms"
    UNKNOWN = "unknown"


class RecordState(str, Enum):
    """Resolution states of a layer record."""
    CONSTRUCTED = "constructed"
    LOADING = "loading"
    RESOLVED = "resolved"
    ERROR = "error"


class FeatureClassKind(str, Enum):
    """The closed set of feature class flavours."""
    PLACEHOLDER = "placeholder"
    BASIC = "basic"
    ATTRIBUTE = "attribute"
    DYNAMIC_LEAF = "dynamic_leaf"
    WMS = "wms"


class ZoomDirection(str, Enum):
    """Direction the map must zoom to bring a layer back on scale."""
    IN = "in"
    OUT = "out"


# =============================================================================
# Configuration Models
# =============================================================================

class LayerEntryState(BaseModel):
    """Initial state of a layer or sub-layer."""

    opacity: float = 1.0
    visibility: bool = False
    query: bool = False
    snapshot: bool = False


class LayerEntryConfig(BaseModel):
    """
    Configuration for one sub-layer of a map service.

    Everything but the index is optional; gaps are filled once the service
    has told us what the sub-layer is.
    """

    model_config = ConfigDict(populate_by_name=True)

    index: int
    name: Optional[str] = None
    state: Optional[LayerEntryState] = None
    outfields: Optional[str] = None
    state_only: bool = Field(default=False, alias="stateOnly")

    @property
    def effective_state(self) -> LayerEntryState:
        return self.state or LayerEntryState(**DUMMY_SUBLAYER_STATE)


class WmsLayerEntryConfig(BaseModel):
    """Configuration for one WMS layer, addressed by its service id."""

    id: str
    name: Optional[str] = None


class LayerConfig(BaseModel):
    """Configuration for a whole map layer."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str = ""
    url: str = ""
    state: LayerEntryState = Field(default_factory=lambda: LayerEntryState(visibility=True, query=True))
    layer_entries: list[LayerEntryConfig] = Field(default_factory=list, alias="layerEntries")
    name_field: Optional[str] = Field(default=None, alias="nameField")
    extent: Optional[dict] = None


class WmsLayerConfig(LayerConfig):
    """Configuration for a WMS layer."""

    layer_entries: list[WmsLayerEntryConfig] = Field(default_factory=list, alias="layerEntries")


@dataclass
class ResolvedSubConfig:
    """
    A sub-layer configuration plus a marker saying whether defaults were applied.

    Defaulting happens at most once; after that the config is returned as is.
    """

    config: LayerEntryConfig
    defaulted: bool = False

    @classmethod
    def from_entry(cls, entry: LayerEntryConfig, defaulted: bool = False) -> "ResolvedSubConfig":
        return cls(config=entry.model_copy(deep=True), defaulted=defaulted)

    @classmethod
    def for_discovered(cls, index: int, server_name: str = "") -> "ResolvedSubConfig":
        """Sub-layer found on the server with no configuration at all."""
        entry = LayerEntryConfig(
            index=index,
            name=server_name,
            state=LayerEntryState(**DUMMY_SUBLAYER_STATE),
            outfields=WILDCARD_OUTFIELDS,
            state_only=True,
        )
        return cls(config=entry, defaulted=True)

    def resolve(self, server_name: str = "") -> LayerEntryConfig:
        if not self.defaulted:
            if self.config.state is None:
                self.config.state = LayerEntryState(**DUMMY_SUBLAYER_STATE)
            if self.config.outfields is None:
                self.config.outfields = WILDCARD_OUTFIELDS
            if not self.config.name:
                self.config.name = server_name
            self.defaulted = True
        return self.config


# =============================================================================
# Descriptor Tree
# =============================================================================

@dataclass
class TreeLeaf:
    """A sub-layer that carries data."""
    entry_index: int

    @property
    def is_group(self) -> bool:
        return False

    def to_dict(self) -> dict:
        return {"entryIndex": self.entry_index}


@dataclass
class TreeGroup:
    """A sub-layer that only nests other sub-layers."""
    entry_index: int
    name: str
    children: list[Union["TreeGroup", TreeLeaf]] = field(default_factory=list)

    @property
    def is_group(self) -> bool:
        return True

    def to_dict(self) -> dict:
        return {
            "entryIndex": self.entry_index,
            "name": self.name,
            "childs": [child.to_dict() for child in self.children],
        }


TreeNode = Union[TreeGroup, TreeLeaf]


# =============================================================================
# Service Metadata
# =============================================================================

@dataclass
class SubLayerInfo:
    """Server description of one sub-layer of a map service."""
    id: int
    name: str = ""
    sub_layer_ids: Optional[list[int]] = None
    parent_layer_id: int = -1
    min_scale: float = 0
    max_scale: float = 0
    default_visibility: bool = True

    @property
    def is_group(self) -> bool:
        return bool(self.sub_layer_ids)


@dataclass
class WmsLayerInfo:
    """Server description of one (possibly nested) WMS layer."""
    name: str
    title: str = ""
    sub_layers: list["WmsLayerInfo"] = field(default_factory=list)


@dataclass
class FieldInfo:
    """One attribute field of a layer."""
    name: str
    type: str = "esriFieldTypeString"
    alias: Optional[str] = None


@dataclass
class LayerData:
    """Layer-level metadata delivered by the attribute loader."""
    layer_type: str = ""
    geometry_type: Optional[str] = None
    fields: list[FieldInfo] = field(default_factory=list)
    renderer: Any = None
    oid_field: str = "OBJECTID"
    supports_features: bool = True
    min_scale: float = 0
    max_scale: float = 0
    extent: Optional[dict] = None


@dataclass
class AttributeSet:
    """Attribute rows of a layer plus an object-id lookup."""
    features: list[dict] = field(default_factory=list)
    oid_field: str = "OBJECTID"
    oid_index: dict[Any, int] = field(default_factory=dict)

    @classmethod
    def from_rows(cls, rows: list[dict], oid_field: str = "OBJECTID") -> "AttributeSet":
        return cls(
            features=rows,
            oid_field=oid_field,
            oid_index={row[oid_field]: pos for pos, row in enumerate(rows) if oid_field in row},
        )

    def by_oid(self, oid: Any) -> Optional[dict]:
        pos = self.oid_index.get(oid)
        return None if pos is None else self.features[pos]


# =============================================================================
# Scale & Symbology
# =============================================================================

@dataclass(frozen=True)
class ScaleSet:
    """Scale bounds of a layer. 0 means no bound."""
    min_scale: float = 0
    max_scale: float = 0


@dataclass(frozen=True)
class ScaleVisibility:
    """Result of checking a layer against the current map scale."""
    off_scale: bool = False
    zoom_direction: Optional[ZoomDirection] = None

    @property
    def zoom_in(self) -> bool:
        return self.zoom_direction == ZoomDirection.IN


@dataclass
class SymbologyItem:
    """One legend entry: a label and an icon."""
    name: Optional[str] = None
    svgcode: Optional[str] = None


# =============================================================================
# Identify
# =============================================================================

@dataclass
class IdentifyOptions:
    """Inputs for an identify request."""
    layer_ids: list[int] = field(default_factory=list)
    geometry: Any = None
    map_point: Any = None
    map_view: Any = None
    tolerance: Optional[int] = None


@dataclass
class IdentifyHit:
    """One feature returned by a server-side identify."""
    layer_id: int
    value: str
    attributes: dict = field(default_factory=dict)


@dataclass
class IdentifyResult:
    """Identify output bucket for one leaf of a layer."""
    name: str
    symbology: list[SymbologyItem]
    format: str
    record: Any
    feature_index: int
    caption: Optional[str] = None
    data: list[dict] = field(default_factory=list)
    is_loading: bool = True


@dataclass
class IdentifyBundle:
    """Per-leaf result buckets plus one task resolving when all are filled."""
    identify_results: list[IdentifyResult]
    identify_task: asyncio.Future
