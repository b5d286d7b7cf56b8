"""
Layer Record - coordinator for one map layer.

A record owns the engine-side layer handle, drives resolution once the layer
has loaded, keeps one feature class per resolvable index and hands out proxy
objects for the UI. LayerRecord itself covers single-layer sources (tile,
image, raster); feature, dynamic and WMS layers specialise it.
"""

import asyncio
import logging
from types import MappingProxyType
from typing import Any, Awaitable, Optional

from utils.error_handlers import LayerNotLoadedError
from utils.parallel import DeferredTasks

from .collaborators import LayerServices
from .config import LayerRecordSettings, get_settings
from .feature_classes import FeatureClass, create_feature_class
from .models import (
    ClientLayerType,
    FeatureClassKind,
    FieldInfo,
    LayerConfig,
    RecordState,
    ScaleSet,
    ScaleVisibility,
)
from .proxy import LayerProxy

logger = logging.getLogger(__name__)


class LayerRecord:
    """
    Record for a layer with a single, attribute-less feature class.

    Lifecycle:
        CONSTRUCTED -> LOADING -> RESOLVED (or ERROR if the layer fails to load)
    """

    # flavour of the feature classes this record resolves to
    feature_class_kind = FeatureClassKind.BASIC

    def __init__(
        self,
        layer,
        config: LayerConfig,
        services: Optional[LayerServices] = None,
        settings: Optional[LayerRecordSettings] = None,
        layer_type: ClientLayerType = ClientLayerType.ESRI_TILE,
    ):
        """
        Args:
            layer: engine-side layer handle (see collaborators.RemoteLayer)
            config: layer configuration
            services: outside services used while resolving
            settings: runtime settings (read from the environment if not given)
            layer_type: client layer type for plain single-layer sources
        """
        self._layer = layer
        self.config = config
        self.services = services or LayerServices()
        self.settings = settings or get_settings()
        self._layer_type = layer_type

        self._state = RecordState.CONSTRUCTED
        self._destroyed = False
        self._root_proxy: Optional[LayerProxy] = None
        self._deferred = DeferredTasks(config.id)

        # feature classes keyed by service index
        self._default_fc = 0
        self._feature_classes: dict[int, FeatureClass] = {
            0: create_feature_class(FeatureClassKind.PLACEHOLDER, self, 0, name=config.name),
        }

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def layer(self):
        return self._layer

    @property
    def layer_id(self) -> str:
        return self.config.id

    @property
    def layer_url(self) -> str:
        return getattr(self._layer, "url", "") or ""

    @property
    def layer_type(self) -> ClientLayerType:
        return self._layer_type

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def state(self) -> RecordState:
        return self._state

    @property
    def is_resolved(self) -> bool:
        return self._state == RecordState.RESOLVED

    @property
    def is_destroyed(self) -> bool:
        return self._destroyed

    @property
    def feature_classes(self):
        """Read-only view of the feature classes by index."""
        return MappingProxyType(self._feature_classes)

    @property
    def visibility(self) -> bool:
        return self._layer.visible

    @visibility.setter
    def visibility(self, value: bool):
        self._layer.set_visibility(value)

    @property
    def opacity(self) -> float:
        return self._layer.opacity

    @opacity.setter
    def opacity(self, value: float):
        self._layer.set_opacity(value)

    @property
    def extent(self):
        return self.config.extent

    @property
    def symbology(self) -> list:
        return self._feature_class().symbology

    @property
    def feature_count(self) -> Optional[int]:
        # non-attribute layers have nothing to count
        return None

    def get_geom_type(self) -> Optional[str]:
        return None

    # =========================================================================
    # Loading
    # =========================================================================

    async def load(self):
        """
        Fetch the layer's metadata and resolve the record.

        Hosts that drive loading themselves can call on_load() from their
        layer-loaded event instead.
        """
        if self._state in (RecordState.LOADING, RecordState.RESOLVED):
            return
        self._state = RecordState.LOADING
        try:
            await self._layer.load()
        except Exception as e:
            self._state = RecordState.ERROR
            logger.error(f"Layer {self.layer_id} failed to load: {e}")
            raise
        await self.on_load()

    async def on_load(self):
        """Resolve the record once the layer metadata is available."""
        if self._destroyed:
            logger.debug(f"Ignoring load of destroyed layer {self.layer_id}")
            return
        if self._state == RecordState.RESOLVED:
            logger.debug(f"Layer {self.layer_id} already resolved")
            return
        self._state = RecordState.LOADING
        try:
            await self._resolve()
        except Exception as e:
            self._state = RecordState.ERROR
            logger.error(f"Layer {self.layer_id} could not be resolved: {e}")
            raise
        if self._destroyed:
            # left in LOADING so load() does not start over
            logger.debug(f"Layer {self.layer_id} destroyed while resolving")
            return
        self._state = RecordState.RESOLVED
        logger.info(f"Layer {self.layer_id} resolved ({self.layer_type.value})")

    async def _resolve(self):
        fc = create_feature_class(self.feature_class_kind, self, 0, self.config)
        self._default_fc = 0
        self._feature_classes[0] = fc
        fc.load_symbology()

    def defer(self, coro: Awaitable[Any], label: str = "") -> asyncio.Future:
        """Run a refinement in the background. Failures are logged, not raised."""
        return self._deferred.schedule(coro, label=label)

    async def wait_for_refinements(self):
        """Wait for every background refinement started so far."""
        await self._deferred.drain()

    def destroy(self):
        """
        Tear the record down. Refinements still in flight are not cancelled;
        their results are dropped when they land.
        """
        self._destroyed = True
        self._feature_classes.clear()
        logger.debug(f"Layer {self.layer_id} destroyed with {self._deferred.pending} refinements in flight")

    def _is_gone(self, fc: FeatureClass) -> bool:
        """True when a late result for fc should be thrown away."""
        if self._destroyed or self._feature_classes.get(fc.index) is not fc:
            logger.debug(f"Dropping late result for index {fc.index} of layer {self.layer_id}")
            return True
        return False

    # =========================================================================
    # Proxies
    # =========================================================================

    def get_proxy(self) -> LayerProxy:
        """Proxy for the root of the layer (main legend entry)."""
        if self._root_proxy is None:
            self._root_proxy = LayerProxy(self)
            self._root_proxy.convert_to_single_layer(self)
        return self._root_proxy

    # =========================================================================
    # Per-index queries
    # =========================================================================

    def _feature_class(self, index: Optional[int] = None) -> FeatureClass:
        idx = self._default_fc if index is None else index
        fc = self._feature_classes.get(idx)
        if fc is None:
            raise LayerNotLoadedError(
                f"No feature class for index {idx} on layer {self.layer_id}",
                {"layer_id": self.layer_id, "index": idx, "state": self._state.value},
            )
        return fc

    def is_queryable(self, index: Optional[int] = None) -> bool:
        return self._feature_class(index).queryable

    def set_queryable(self, value: bool, index: Optional[int] = None):
        self._feature_class(index).queryable = value

    async def get_scale_set(self, index: Optional[int] = None) -> ScaleSet:
        return await self._feature_class(index).get_scale_set()

    async def is_off_scale(self, map_scale: float, index: Optional[int] = None) -> ScaleVisibility:
        return await self._feature_class(index).is_off_scale(map_scale)

    def get_symbology(self, index: Optional[int] = None) -> list:
        return self._feature_class(index).symbology

    def get_layer_data(self, index: Optional[int] = None):
        return self._feature_class(index).get_layer_data()

    def get_attribs(self, index: Optional[int] = None):
        return self._feature_class(index).get_attribs()

    def get_formatted_attributes(self, index: Optional[int] = None):
        return self._feature_class(index).get_formatted_attributes()

    async def aliased_field_name(self, attrib_name: str, index: Optional[int] = None) -> str:
        return await self._feature_class(index).aliased_field_name(attrib_name)

    async def check_date_type(self, attrib_name: str, index: Optional[int] = None) -> bool:
        return await self._feature_class(index).check_date_type(attrib_name)

    def get_feature_name(self, obj_id: Any, attribs: Optional[dict] = None, index: Optional[int] = None) -> str:
        return self._feature_class(index).get_feature_name(obj_id, attribs)

    def _feature_count_url(self, index: Optional[int] = None) -> str:
        return self.layer_url

    async def get_feature_count(self, index: Optional[int] = None) -> int:
        url = self._feature_count_url(index)
        if not url:
            # file based layer, everything is already on the client
            return len(getattr(self._layer, "graphics", None) or [])
        return await self.services.feature_counter.get_feature_count(url)

    # =========================================================================
    # Map interaction
    # =========================================================================

    async def zoom_to_extent(self, map_view, extent):
        if extent is None:
            logger.warning(f"Layer {self.layer_id} has no extent to zoom to")
            return
        await map_view.zoom_to_extent(extent)

    async def zoom_to_boundary(self, map_view):
        await self.zoom_to_extent(map_view, self.extent)

    @staticmethod
    def attributes_to_details(attribs: dict, fields: Optional[list[FieldInfo]] = None) -> list[dict]:
        """Turn an attribute dict into key/value rows for a details panel."""
        by_name = {f.name: f for f in fields or []}
        details = []
        for key, value in attribs.items():
            f = by_name.get(key)
            details.append({
                "key": (f.alias or f.name) if f else key,
                "value": value,
                "field": key,
                "type": f.type if f else None,
            })
        return details
