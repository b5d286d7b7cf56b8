"""
Layer Records - client-side state for map layers and their sub-layers.

This module provides:
- LayerRecord / FeatureRecord / DynamicRecord / WmsRecord: per-layer coordinators
- LayerProxy: stable, rebindable handle for UI bindings
- Feature classes: per sub-layer scale, visibility, symbology and attributes
- RestFeatureCounter / RestLegendService: aiohttp clients for map services
"""

from .config import LayerRecordSettings, get_settings, set_settings
from .models import (
    ClientLayerType,
    RecordState,
    FeatureClassKind,
    ZoomDirection,
    LayerEntryState,
    LayerEntryConfig,
    LayerConfig,
    WmsLayerEntryConfig,
    WmsLayerConfig,
    ResolvedSubConfig,
    TreeGroup,
    TreeLeaf,
    SubLayerInfo,
    WmsLayerInfo,
    FieldInfo,
    LayerData,
    AttributeSet,
    ScaleSet,
    ScaleVisibility,
    SymbologyItem,
    IdentifyOptions,
    IdentifyHit,
    IdentifyResult,
    IdentifyBundle,
)
from .collaborators import LayerServices, SimpleAttributeBundle
from .feature_classes import (
    FeatureClass,
    PlaceholderFC,
    BasicFC,
    AttribFC,
    DynamicFC,
    WmsFC,
    compute_scale_visibility,
    create_feature_class,
    get_wms_layer_title,
)
from .proxy import LayerProxy, ProxyKind
from .layer_record import LayerRecord
from .feature_record import FeatureRecord
from .dynamic_record import DynamicRecord, server_layer_type_to_client
from .wms_record import WmsRecord
from .rest_client import RestFeatureCounter, RestLegendService

__all__ = [
    # Config
    "LayerRecordSettings",
    "get_settings",
    "set_settings",
    # Models
    "ClientLayerType",
    "RecordState",
    "FeatureClassKind",
    "ZoomDirection",
    "LayerEntryState",
    "LayerEntryConfig",
    "LayerConfig",
    "WmsLayerEntryConfig",
    "WmsLayerConfig",
    "ResolvedSubConfig",
    "TreeGroup",
    "TreeLeaf",
    "SubLayerInfo",
    "WmsLayerInfo",
    "FieldInfo",
    "LayerData",
    "AttributeSet",
    "ScaleSet",
    "ScaleVisibility",
    "SymbologyItem",
    "IdentifyOptions",
    "IdentifyHit",
    "IdentifyResult",
    "IdentifyBundle",
    # Collaborators
    "LayerServices",
    "SimpleAttributeBundle",
    # Feature classes
    "FeatureClass",
    "PlaceholderFC",
    "BasicFC",
    "AttribFC",
    "DynamicFC",
    "WmsFC",
    "compute_scale_visibility",
    "create_feature_class",
    "get_wms_layer_title",
    # Proxy
    "LayerProxy",
    "ProxyKind",
    # Records
    "LayerRecord",
    "FeatureRecord",
    "DynamicRecord",
    "WmsRecord",
    "server_layer_type_to_client",
    # REST
    "RestFeatureCounter",
    "RestLegendService",
]
