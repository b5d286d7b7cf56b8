"""
WMS Record - an OGC WMS layer.

The legend is built from the entries in the config: one item per requested
WMS layer, named by the config, the service catalog, or the raw WMS id.
"""

import logging

from .layer_record import LayerRecord
from .models import ClientLayerType, FeatureClassKind, WmsLayerConfig

logger = logging.getLogger(__name__)


class WmsRecord(LayerRecord):
    """Record for a WMS layer."""

    feature_class_kind = FeatureClassKind.WMS

    def __init__(self, layer, config: WmsLayerConfig, services=None, settings=None):
        super().__init__(layer, config, services, settings, layer_type=ClientLayerType.OGC_WMS)

    async def _resolve(self):
        await super()._resolve()
        logger.debug(f"WMS layer {self.layer_id} requested {len(self.config.layer_entries)} entries")
