"""
Layer Proxy - the stable object UI code binds to.

Legend entries and data grids bind to a proxy before anyone knows what the
layer behind it will turn out to be. Bindings cannot be torn down and
recreated when a legend item goes from placeholder to a specific layer type,
so the proxy never changes identity. Instead it holds one (kind, source)
binding and every operation dispatches on the kind. Rebinding swaps both in
a single assignment, so no caller can observe half of the old behaviour and
half of the new.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from utils.error_handlers import UnsupportedOperationError

logger = logging.getLogger(__name__)


class ProxyKind(str, Enum):
    """What a proxy is currently backed by."""
    SINGLE_LAYER = "single_layer"
    FEATURE_LAYER = "feature_layer"
    DYNAMIC_LEAF = "dynamic_leaf"
    PLACEHOLDER = "placeholder"


@dataclass(frozen=True)
class ProxyOperations:
    """Operation set for one proxy kind. None means not supported."""
    get_symbology: Optional[Callable] = None
    get_name: Optional[Callable] = None
    get_state: Optional[Callable] = None
    get_layer_type: Optional[Callable] = None
    get_geometry_type: Optional[Callable] = None
    get_feature_count: Optional[Callable] = None
    get_extent: Optional[Callable] = None
    get_visibility: Optional[Callable] = None
    set_visibility: Optional[Callable] = None
    get_opacity: Optional[Callable] = None
    set_opacity: Optional[Callable] = None
    get_query: Optional[Callable] = None
    set_query: Optional[Callable] = None
    get_snapshot: Optional[Callable] = None
    set_snapshot: Optional[Callable] = None
    get_formatted_attributes: Optional[Callable] = None
    zoom_to_boundary: Optional[Callable] = None


def _set_attr(name: str) -> Callable:
    def setter(source, value):
        setattr(source, name, value)
    return setter


# source is a layer record
_SINGLE_LAYER = ProxyOperations(
    get_symbology=lambda s: s.symbology,
    get_name=lambda s: s.name,
    get_state=lambda s: s.state,
    get_layer_type=lambda s: s.layer_type,
    get_geometry_type=lambda s: None,
    get_feature_count=lambda s: None,
    get_extent=lambda s: s.extent,
    get_visibility=lambda s: s.visibility,
    set_visibility=_set_attr("visibility"),
    get_opacity=lambda s: s.opacity,
    set_opacity=_set_attr("opacity"),
    get_query=lambda s: s.is_queryable(),
    set_query=lambda s, value: s.set_queryable(value),
    zoom_to_boundary=lambda s, map_view: s.zoom_to_boundary(map_view),
)

# source is a feature record
_FEATURE_LAYER = ProxyOperations(
    get_symbology=_SINGLE_LAYER.get_symbology,
    get_name=_SINGLE_LAYER.get_name,
    get_state=_SINGLE_LAYER.get_state,
    get_layer_type=_SINGLE_LAYER.get_layer_type,
    get_geometry_type=lambda s: s.get_geom_type(),
    get_feature_count=lambda s: s.feature_count,
    get_extent=_SINGLE_LAYER.get_extent,
    get_visibility=_SINGLE_LAYER.get_visibility,
    set_visibility=_SINGLE_LAYER.set_visibility,
    get_opacity=_SINGLE_LAYER.get_opacity,
    set_opacity=_SINGLE_LAYER.set_opacity,
    get_query=_SINGLE_LAYER.get_query,
    set_query=_SINGLE_LAYER.set_query,
    get_snapshot=lambda s: s.is_snapshot,
    set_snapshot=_set_attr("is_snapshot"),
    get_formatted_attributes=lambda s: s.get_formatted_attributes(),
    zoom_to_boundary=_SINGLE_LAYER.zoom_to_boundary,
)

# source is a DynamicFC
_DYNAMIC_LEAF = ProxyOperations(
    get_symbology=lambda s: s.symbology,
    get_name=lambda s: s.name,
    get_state=lambda s: s.state,
    get_layer_type=lambda s: s.layer_type,
    get_geometry_type=lambda s: s.geom_type,
    get_feature_count=lambda s: s.feature_count,
    get_extent=lambda s: s.extent,
    get_visibility=lambda s: s.get_visibility(),
    set_visibility=lambda s, value: s.set_visibility(value),
    get_opacity=lambda s: s.opacity,
    set_opacity=_set_attr("opacity"),
    get_query=lambda s: s.queryable,
    set_query=_set_attr("queryable"),
    get_formatted_attributes=lambda s: s.get_formatted_attributes(),
    zoom_to_boundary=lambda s, map_view: s.zoom_to_boundary(map_view),
)

# source is a PlaceholderFC
_PLACEHOLDER = ProxyOperations(
    get_symbology=lambda s: s.symbology,
    get_name=lambda s: s.name,
    get_state=lambda s: s.state,
    get_layer_type=lambda s: s.layer_type,
    get_geometry_type=lambda s: s.geom_type,
    get_extent=lambda s: s.extent,
)

_OPERATIONS = {
    ProxyKind.SINGLE_LAYER: _SINGLE_LAYER,
    ProxyKind.FEATURE_LAYER: _FEATURE_LAYER,
    ProxyKind.DYNAMIC_LEAF: _DYNAMIC_LEAF,
    ProxyKind.PLACEHOLDER: _PLACEHOLDER,
}


class LayerProxy:
    """
    UI-facing handle over a layer record or a feature class.

    Every property reads through the current binding, so code holding an old
    reference sees new data as soon as the proxy is rebound.
    """

    def __init__(self, source: Any, kind: ProxyKind = ProxyKind.PLACEHOLDER):
        self._binding = (ProxyKind(kind), source)

    def __repr__(self) -> str:
        kind, source = self._binding
        return f"<LayerProxy kind={kind.value} source={type(source).__name__}>"

    # =========================================================================
    # Binding
    # =========================================================================

    @property
    def kind(self) -> ProxyKind:
        return self._binding[0]

    @property
    def source(self) -> Any:
        return self._binding[1]

    @property
    def is_placeholder(self) -> bool:
        return self._binding[0] == ProxyKind.PLACEHOLDER

    def rebind(self, new_source: Any, kind: ProxyKind):
        """Point the proxy at a new source and switch to that kind's operations."""
        kind = ProxyKind(kind)
        logger.debug(f"Rebinding proxy from {self._binding[0].value} to {kind.value}")
        self._binding = (kind, new_source)

    def convert_to_single_layer(self, layer_record):
        self.rebind(layer_record, ProxyKind.SINGLE_LAYER)

    def convert_to_feature_layer(self, layer_record):
        self.rebind(layer_record, ProxyKind.FEATURE_LAYER)

    def convert_to_dynamic_leaf(self, dynamic_fc):
        self.rebind(dynamic_fc, ProxyKind.DYNAMIC_LEAF)

    def convert_to_placeholder(self, placeholder_fc):
        self.rebind(placeholder_fc, ProxyKind.PLACEHOLDER)

    def _call(self, operation: str, *args):
        kind, source = self._binding
        handler = getattr(_OPERATIONS[kind], operation)
        if handler is None:
            raise UnsupportedOperationError(
                f"Call not supported: {operation} on a {kind.value} proxy",
                {"operation": operation, "kind": kind.value},
            )
        return handler(source, *args)

    # =========================================================================
    # Read-only properties
    # =========================================================================

    @property
    def symbology(self) -> list:
        return self._call("get_symbology")

    @property
    def name(self) -> str:
        """Group or node name."""
        return self._call("get_name")

    @property
    def state(self):
        return self._call("get_state")

    @property
    def layer_type(self):
        return self._call("get_layer_type")

    @property
    def geometry_type(self) -> Optional[str]:
        return self._call("get_geometry_type")

    @property
    def feature_count(self) -> Optional[int]:
        return self._call("get_feature_count")

    @property
    def extent(self):
        return self._call("get_extent")

    @property
    def formatted_attributes(self):
        """Awaitable resolving to attributes shaped for the data grid."""
        return self._call("get_formatted_attributes")

    # =========================================================================
    # Controls
    # =========================================================================

    @property
    def visibility(self) -> bool:
        return self._call("get_visibility")

    @visibility.setter
    def visibility(self, value: bool):
        self._call("set_visibility", value)

    @property
    def opacity(self) -> float:
        return self._call("get_opacity")

    @opacity.setter
    def opacity(self, value: float):
        self._call("set_opacity", value)

    @property
    def query(self) -> bool:
        return self._call("get_query")

    @query.setter
    def query(self, value: bool):
        self._call("set_query", value)

    @property
    def snapshot(self) -> bool:
        return self._call("get_snapshot")

    @snapshot.setter
    def snapshot(self, value: bool):
        self._call("set_snapshot", value)

    def zoom_to_boundary(self, map_view):
        """Returns an awaitable that resolves once the zoom completes."""
        return self._call("zoom_to_boundary", map_view)
