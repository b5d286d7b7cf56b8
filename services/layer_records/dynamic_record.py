"""
Dynamic Record - a map service layer with a tree of sub-layers.

The configuration handed to the constructor is usually incomplete: it may
not have entries for every child, and nothing says which children are groups
and which are leaves. That is only known once the service has loaded, and
each leaf then resolves its own details (feature count, geometry, legend)
independently. UI code can ask for a child proxy at any point; before the
layer loads it gets a placeholder that is rebound in place later.
"""

import asyncio
import logging
from types import MappingProxyType
from typing import Optional

from constants.layer_constants import (
    HIDE_ALL_SENTINEL,
    SERVER_FEATURE_LAYER,
    SERVER_RASTER_LAYER,
)
from utils.error_handlers import LayerNotLoadedError
from utils.parallel import parallel_execute

from .feature_classes import AttribFC, DynamicFC, create_feature_class
from .layer_record import LayerRecord
from .models import (
    ClientLayerType,
    FeatureClassKind,
    IdentifyBundle,
    IdentifyHit,
    IdentifyOptions,
    IdentifyResult,
    LayerConfig,
    LayerData,
    LayerEntryConfig,
    ResolvedSubConfig,
    SubLayerInfo,
    SymbologyItem,
    TreeGroup,
    TreeLeaf,
    TreeNode,
)
from .proxy import LayerProxy

logger = logging.getLogger(__name__)


def server_layer_type_to_client(server_type: Optional[str]) -> ClientLayerType:
    """Convert the layer type string a map service reports to a client layer type."""
    if server_type == SERVER_FEATURE_LAYER:
        return ClientLayerType.ESRI_FEATURE
    if server_type == SERVER_RASTER_LAYER:
        return ClientLayerType.ESRI_RASTER
    logger.warning(f"Unexpected layer type reported by server: {server_type}")
    return ClientLayerType.UNKNOWN


class DynamicRecord(LayerRecord):
    """Record for a dynamic map service layer."""

    feature_class_kind = FeatureClassKind.DYNAMIC_LEAF

    def __init__(
        self,
        layer,
        config: LayerConfig,
        services=None,
        settings=None,
        config_is_complete: bool = False,
    ):
        """
        Args:
            layer: engine-side dynamic layer handle
            config: layer configuration, children possibly missing or partial
            services: outside services used while resolving
            settings: runtime settings
            config_is_complete: set when the config already has full state for
                every child. The record then applies it as given and sets the
                initial visible sub-layers itself. A config that is not really
                complete will leave the layer in an undesired initial state.
        """
        super().__init__(layer, config, services, settings, layer_type=ClientLayerType.ESRI_DYNAMIC)
        self._config_is_complete = config_is_complete

        # dynamic layers have no default feature class, only children
        self._feature_classes = {}
        self._proxies: dict[int, LayerProxy] = {}
        self._sub_configs: dict[int, ResolvedSubConfig] = {}
        self._layer_infos: dict[int, SubLayerInfo] = {}
        self._child_tree: Optional[list[TreeNode]] = None

        # supports child opacity, renderer change, layer reorder
        self._is_true_dynamic = False

    @property
    def is_true_dynamic(self) -> bool:
        return self._is_true_dynamic

    @property
    def config_is_complete(self) -> bool:
        return self._config_is_complete

    @property
    def symbology(self) -> list:
        # the layer itself has no legend, its children do
        return []

    @property
    def sub_configs(self):
        """Read-only view of the resolved sub-layer configs by index."""
        return MappingProxyType(self._sub_configs)

    @property
    def visible_layers(self) -> list[int]:
        return [idx for idx in (self._layer.visible_layers or []) if idx != HIDE_ALL_SENTINEL]

    def set_visible_layers(self, layer_ids: list[int]):
        """Apply the visible sub-layers in one call. An empty list hides everything."""
        ids = list(layer_ids)
        if not ids:
            ids = [HIDE_ALL_SENTINEL]
        self._layer.set_visible_layers(ids)

    # =========================================================================
    # Proxies
    # =========================================================================

    def get_child_proxy(self, index: int) -> LayerProxy:
        """
        Proxy for a child entry (leaf or group).

        The layer may not be loaded yet, so we cannot tell whether the index is
        valid or a group. We always hand out a proxy; an unknown one starts as
        a placeholder and is rebound once the real data exists.
        """
        index = int(index)
        proxy = self._proxies.get(index)
        if proxy is None:
            proxy = LayerProxy(create_feature_class(FeatureClassKind.PLACEHOLDER, self, index))
            self._proxies[index] = proxy
        return proxy

    def get_proxy(self, index: Optional[int] = None) -> LayerProxy:
        if index is None:
            return super().get_proxy()
        return self.get_child_proxy(index)

    # =========================================================================
    # Resolution
    # =========================================================================

    def _fetch_sub_config(self, index: int, server_name: str = "") -> LayerEntryConfig:
        """Sub-config for an index, defaulted the first time it is needed."""
        sub_config = self._sub_configs.get(index)
        if sub_config is None:
            # no config at all, take defaults and the server's name
            sub_config = ResolvedSubConfig.for_discovered(index, server_name)
            self._sub_configs[index] = sub_config
        return sub_config.resolve(server_name)

    def _process_layer_info(self, layer_info: SubLayerInfo, tree: list):
        """Walk one service entry and everything under it, building tree nodes."""
        sub_config = self._fetch_sub_config(layer_info.id, layer_info.name)

        if layer_info.is_group:
            group = TreeGroup(entry_index=layer_info.id, name=sub_config.name or "")
            tree.append(group)
            for child_id in layer_info.sub_layer_ids:
                child_info = self._layer_infos.get(child_id)
                if child_info is None:
                    logger.warning(f"Sub-layer {child_id} of {self.layer_id} is not described by the service")
                    continue
                self._process_layer_info(child_info, group.children)
            return

        placeholder = create_feature_class(
            FeatureClassKind.PLACEHOLDER, self, layer_info.id, name=sub_config.name or ""
        )
        proxy = self._proxies.get(layer_info.id)
        if proxy is not None:
            # pre-made proxy (structured legend asked early)
            proxy.convert_to_placeholder(placeholder)
        else:
            self._proxies[layer_info.id] = LayerProxy(placeholder)
        tree.append(TreeLeaf(entry_index=layer_info.id))

    async def _resolve(self):
        self._is_true_dynamic = bool(getattr(self._layer, "supports_dynamic_layers", False))

        self._sub_configs = {
            entry.index: ResolvedSubConfig.from_entry(entry, defaulted=self._config_is_complete)
            for entry in self.config.layer_entries
        }
        self._layer_infos = {info.id: info for info in self._layer.layer_infos or []}

        child_tree: list[TreeNode] = []
        for entry in self.config.layer_entries:
            if entry.state_only:
                continue
            layer_info = self._layer_infos.get(entry.index)
            if layer_info is None:
                logger.warning(f"Configured sub-layer {entry.index} not found on {self.layer_id}")
                continue
            self._process_layer_info(layer_info, child_tree)
        self._child_tree = child_tree

        attribute_bundle = await self.services.attribs.load_layer_attribs(self._layer)
        if self._destroyed:
            return

        for idx in attribute_bundle.indexes:
            # no defaulted sub-config means the leaf is not in our tree
            sub_config = self._sub_configs.get(idx)
            if sub_config is None or not sub_config.defaulted:
                continue

            fc = create_feature_class(
                self.feature_class_kind, self, idx, sub_config.config, layer_package=attribute_bundle[idx]
            )
            self._feature_classes[idx] = fc

            proxy = self._proxies.get(idx)
            if proxy is not None:
                proxy.convert_to_dynamic_leaf(fc)

            fc.load_symbology()
            self.defer(self._refine_layer_type(fc), label=f"layer data {idx}")
            self.defer(self._refine_feature_count(fc), label=f"feature count {idx}")

        if self._config_is_complete:
            initial_visible = [
                idx for idx in self._feature_classes
                if self._sub_configs[idx].config.effective_state.visibility
            ]
            self.set_visible_layers(initial_visible)

    async def _refine_layer_type(self, fc: DynamicFC):
        layer_data: LayerData = await fc.get_layer_data()
        if self._is_gone(fc):
            return
        fc.layer_type = server_layer_type_to_client(layer_data.layer_type)
        if fc.layer_type == ClientLayerType.ESRI_FEATURE:
            fc.geom_type = layer_data.geometry_type

    async def _refine_feature_count(self, fc: DynamicFC):
        count = await self.get_feature_count(fc.index)
        if self._is_gone(fc):
            return
        fc.feature_count = count

    def _feature_count_url(self, index: Optional[int] = None) -> str:
        # point url to the sub-layer
        if index is None:
            return self.layer_url
        return f"{self.layer_url}/{index}"

    # =========================================================================
    # Tree access
    # =========================================================================

    def get_child_tree(self) -> list[TreeNode]:
        if self._child_tree is None:
            raise LayerNotLoadedError(
                "Called get_child_tree before layer is loaded",
                {"layer_id": self.layer_id, "state": self._state.value},
            )
        return self._child_tree

    def get_child_name(self, index: int) -> str:
        """Service name of a child, group or leaf."""
        layer_info = self._layer_infos.get(int(index))
        if layer_info is None:
            raise LayerNotLoadedError(
                f"No sub-layer {index} known for layer {self.layer_id}",
                {"layer_id": self.layer_id, "index": index},
            )
        return layer_info.name

    async def zoom_to_scale(self, child_index: int, map_view, zoom_in: Optional[bool] = None):
        """Ask the map to bring a child back on scale."""
        fc = self._feature_class(child_index)
        scale_set = await fc.get_scale_set()
        return await map_view.zoom_to_scale_set(scale_set, zoom_in)

    # =========================================================================
    # Identify
    # =========================================================================

    def identify(self, options: IdentifyOptions) -> IdentifyBundle:
        """
        Run a server-side identify across the given leaves.

        The caller passes the leaf indices to interrogate (options.layer_ids),
        since only the legend knows what is toggled on. Returns one result
        bucket per leaf and a task resolving once every bucket is done.
        """
        identify_results: dict[int, IdentifyResult] = {}
        for leaf_index in options.layer_ids:
            fc = self._feature_classes.get(leaf_index)
            identify_results[leaf_index] = IdentifyResult(
                name=fc.name if fc else self.get_child_name(leaf_index),
                symbology=fc.symbology if fc else [],
                format="EsriFeature",
                record=self,
                feature_index=leaf_index,
                caption=self.name,
            )

        options.tolerance = self.settings.click_tolerance
        identify_task = asyncio.ensure_future(self._run_identify(options, identify_results))
        return IdentifyBundle(identify_results=list(identify_results.values()), identify_task=identify_task)

    async def _run_identify(self, options: IdentifyOptions, identify_results: dict[int, IdentifyResult]):
        hits: list[IdentifyHit] = await self.services.identify.server_layer_identify(self._layer, options)
        hit_indexes = {hit.layer_id for hit in hits}

        # leaves with nothing under the click are done already, and so are
        # indices without a feature class (groups, unresolved leaves)
        for idx, identify_result in identify_results.items():
            if idx not in hit_indexes or idx not in self._feature_classes:
                identify_result.is_loading = False

        wanted = [
            hit for hit in hits
            if hit.layer_id in identify_results and hit.layer_id in self._feature_classes
        ]
        skipped = len(hits) - len(wanted)
        if skipped:
            logger.debug(f"Identify on {self.layer_id} skipped {skipped} hits outside the resolved leaves")
        await parallel_execute(
            [self._add_identify_hit(hit, identify_results[hit.layer_id]) for hit in wanted],
            max_concurrency=self.settings.max_concurrency,
            return_exceptions=False,
        )
        return list(identify_results.values())

    async def _add_identify_hit(self, hit: IdentifyHit, identify_result: IdentifyResult):
        layer_data: LayerData = await self.get_layer_data(hit.layer_id)
        if layer_data.supports_features:
            # identify returns aliased field names; un-alias for lookups
            unaliased = AttribFC.unalias_attribs(hit.attributes, layer_data.fields)
            identify_result.data.append({
                "name": hit.value,
                "data": self.attributes_to_details(hit.attributes),
                "oid": unaliased.get(layer_data.oid_field),
                "symbology": [
                    SymbologyItem(svgcode=self.services.symbology.get_graphic_icon(unaliased, layer_data.renderer))
                ],
            })
        identify_result.is_loading = False
