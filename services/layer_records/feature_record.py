"""
Feature Record - a layer made of one attributed feature class.

Covers server feature layers and file-based layers (no url).
"""

import asyncio
import logging
from typing import Optional

from .feature_classes import AttribFC, create_feature_class
from .layer_record import LayerRecord
from .models import (
    AttributeSet,
    ClientLayerType,
    FeatureClassKind,
    IdentifyBundle,
    IdentifyOptions,
    IdentifyResult,
    LayerData,
    SymbologyItem,
)
from .proxy import LayerProxy

logger = logging.getLogger(__name__)


class FeatureRecord(LayerRecord):
    """Record for a feature layer."""

    feature_class_kind = FeatureClassKind.ATTRIBUTE

    def __init__(self, layer, config, services=None, settings=None):
        super().__init__(layer, config, services, settings, layer_type=ClientLayerType.ESRI_FEATURE)
        self._geometry_type: Optional[str] = None
        self._fcount: Optional[int] = None
        self._snapshot: bool = config.state.snapshot

    @property
    def is_snapshot(self) -> bool:
        return self._snapshot

    @is_snapshot.setter
    def is_snapshot(self, value: bool):
        # switching modes means the host reloads the layer; we only track the flag
        self._snapshot = value

    @property
    def feature_count(self) -> Optional[int]:
        return self._fcount

    def get_geom_type(self) -> Optional[str]:
        return self._geometry_type

    def is_file_layer(self) -> bool:
        return self._layer is not None and self.layer_url == ""

    def get_proxy(self) -> LayerProxy:
        if self._root_proxy is None:
            self._root_proxy = LayerProxy(self)
            self._root_proxy.convert_to_feature_layer(self)
        return self._root_proxy

    async def _resolve(self):
        attribute_bundle = await self.services.attribs.load_layer_attribs(self._layer)
        if self._destroyed:
            return

        # feature layer has only one index
        idx = attribute_bundle.indexes[0]
        fc = create_feature_class(
            self.feature_class_kind, self, idx, self.config, layer_package=attribute_bundle[idx]
        )
        fc.name_field = self.config.name_field
        self._feature_classes.pop(self._default_fc, None)
        self._default_fc = idx
        self._feature_classes[idx] = fc

        fc.load_symbology()
        self.defer(self._refine_geometry_type(fc), label="geometry type")
        self.defer(self._refine_feature_count(fc), label="feature count")

    async def _refine_geometry_type(self, fc: AttribFC):
        layer_data: LayerData = await fc.get_layer_data()
        if self._is_gone(fc):
            return
        self._geometry_type = layer_data.geometry_type
        fc.geom_type = layer_data.geometry_type

    async def _refine_feature_count(self, fc: AttribFC):
        count = await self.get_feature_count()
        if self._is_gone(fc):
            return
        self._fcount = count
        fc.feature_count = count

    def identify(self, options: IdentifyOptions) -> IdentifyBundle:
        """
        Find the features under a click.

        Returns one result bucket (this layer) and a task that resolves once
        the bucket has been filled.
        """
        fc = self._feature_class()
        identify_result = IdentifyResult(
            name=self.name,
            symbology=fc.symbology,
            format="EsriFeature",
            record=self,
            feature_index=self._default_fc,
        )
        options.tolerance = self.settings.click_tolerance
        identify_task = asyncio.ensure_future(self._run_identify(fc, options, identify_result))
        return IdentifyBundle(identify_results=[identify_result], identify_task=identify_task)

    async def _run_identify(self, fc: AttribFC, options: IdentifyOptions, identify_result: IdentifyResult):
        attributes, features, layer_data = await asyncio.gather(
            fc.get_attribs(),
            self.services.identify.query_features(self._layer, options),
            fc.get_layer_data(),
        )
        attributes: AttributeSet
        layer_data: LayerData

        data = []
        for feature in features:
            obj_id = feature.get("attributes", {}).get(attributes.oid_field)
            feat_attribs = attributes.by_oid(obj_id)
            if feat_attribs is None:
                logger.warning(f"Identify hit {obj_id} missing from attributes of {self.layer_id}")
                continue
            data.append({
                "name": self.get_feature_name(obj_id, feat_attribs),
                "data": self.attributes_to_details(feat_attribs, layer_data.fields),
                "oid": obj_id,
                "symbology": [
                    SymbologyItem(svgcode=self.services.symbology.get_graphic_icon(feat_attribs, layer_data.renderer))
                ],
            })
        identify_result.data = data
        identify_result.is_loading = False
        return [identify_result]
