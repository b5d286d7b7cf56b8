"""
Tests for DynamicRecord: tree building, late-bound child proxies and
background refinements.
"""

import asyncio
import logging

import pytest

from conftest import FakeAttributeSource, FakeMapView, FakeRemoteLayer, make_feature_data
from services.layer_records import (
    ClientLayerType,
    DynamicRecord,
    IdentifyHit,
    IdentifyOptions,
    LayerConfig,
    LayerEntryConfig,
    LayerEntryState,
    ProxyKind,
    RecordState,
    ScaleSet,
    TreeGroup,
    TreeLeaf,
    server_layer_type_to_client,
)
from utils.error_handlers import LayerNotLoadedError, UnsupportedOperationError


SERVICE_URL = "https://maps.example.com/MapServer"


@pytest.fixture
def layer(nested_layer_infos):
    return FakeRemoteLayer(url=SERVICE_URL, layer_infos=nested_layer_infos)


def make_record(layer, services, settings, entries=None, complete=False):
    config = LayerConfig(
        id="landuse",
        name="Land Use Service",
        url=SERVICE_URL,
        layerEntries=entries if entries is not None else [{"index": 1}],
    )
    return DynamicRecord(layer, config, services, settings, config_is_complete=complete)


class TestServerLayerType:
    def test_known_types(self):
        assert server_layer_type_to_client("Feature Layer") == ClientLayerType.ESRI_FEATURE
        assert server_layer_type_to_client("Raster Layer") == ClientLayerType.ESRI_RASTER

    def test_unknown_type(self, caplog):
        with caplog.at_level(logging.WARNING):
            assert server_layer_type_to_client("Annotation Layer") == ClientLayerType.UNKNOWN
        assert "Annotation Layer" in caplog.text


class TestChildTree:
    """Tests for building the descriptor tree."""

    @pytest.mark.asyncio
    async def test_nested_tree_shape(self, layer, services, settings):
        """Test that configuring only the top group discovers the rest."""
        record = make_record(layer, services, settings)

        await record.load()

        assert record.state == RecordState.RESOLVED
        assert record.get_child_tree() == [
            TreeGroup(entry_index=1, name="Land Use", children=[
                TreeLeaf(entry_index=2),
                TreeGroup(entry_index=3, name="Zoning", children=[TreeLeaf(entry_index=4)]),
            ]),
        ]
        assert sorted(record.feature_classes) == [2, 4]

    def test_tree_before_load(self, layer, services, settings):
        record = make_record(layer, services, settings)

        with pytest.raises(LayerNotLoadedError) as exc_info:
            record.get_child_tree()

        assert exc_info.value.error_type == "LAYER_NOT_LOADED"

    @pytest.mark.asyncio
    async def test_configured_entry_missing_on_server(self, layer, services, settings, caplog):
        record = make_record(layer, services, settings, entries=[{"index": 9}])

        with caplog.at_level(logging.WARNING):
            await record.load()

        assert record.get_child_tree() == []
        assert "Configured sub-layer 9" in caplog.text

    @pytest.mark.asyncio
    async def test_state_only_entries_are_not_roots(self, layer, services, settings):
        record = make_record(layer, services, settings, entries=[
            {"index": 1},
            {"index": 2, "stateOnly": True, "name": "Tax Parcels"},
        ])

        await record.load()

        assert len(record.get_child_tree()) == 1
        assert record.get_child_proxy(2).name == "Tax Parcels"

    @pytest.mark.asyncio
    async def test_child_names(self, layer, services, settings):
        record = make_record(layer, services, settings)
        await record.load()

        assert record.get_child_name(3) == "Zoning"
        with pytest.raises(LayerNotLoadedError):
            record.get_child_name(42)

    @pytest.mark.asyncio
    async def test_sub_config_defaulted_once(self, layer, services, settings):
        """Test that fetching a sub-config again does not redo defaulting."""
        record = make_record(layer, services, settings)
        await record.load()

        first = record.sub_configs[4]
        again = record._fetch_sub_config(4, "Renamed On Server")

        assert first.defaulted is True
        assert again is first.config
        assert again.name == "Zoning Districts"

    @pytest.mark.asyncio
    async def test_repeated_on_load_keeps_state(self, layer, services, settings):
        """Test that a second loaded event does not rebuild sub-configs or leaves."""
        record = make_record(layer, services, settings)
        proxy = record.get_child_proxy(2)
        await record.load()
        sub_config = record.sub_configs[2]
        leaf = record.feature_classes[2]
        sub_config.config.state.visibility = True

        await record.on_load()

        assert record.state == RecordState.RESOLVED
        assert record.sub_configs[2] is sub_config
        assert record.feature_classes[2] is leaf
        assert record.sub_configs[2].config.state.visibility is True
        assert proxy.source is leaf
        assert leaf.kind == record.feature_class_kind


class TestChildProxies:
    """Tests for proxies handed out before and after load."""

    def test_placeholder_before_load(self, layer, services, settings):
        record = make_record(layer, services, settings)

        proxy = record.get_child_proxy(2)

        assert proxy.is_placeholder
        assert record.get_child_proxy(2) is proxy
        assert record.get_proxy(2) is proxy
        assert proxy.symbology == []
        with pytest.raises(UnsupportedOperationError):
            proxy.visibility

    @pytest.mark.asyncio
    async def test_same_proxy_after_load(self, layer, services, settings):
        record = make_record(layer, services, settings)
        proxy = record.get_child_proxy(2)

        await record.load()

        assert record.get_child_proxy(2) is proxy
        assert not proxy.is_placeholder
        assert proxy.kind == ProxyKind.DYNAMIC_LEAF
        assert proxy.name == "Parcels"

    @pytest.mark.asyncio
    async def test_named_placeholder_while_attributes_load(self, layer, services, settings):
        """Test that a leaf is a named placeholder between tree walk and attribute load."""
        gate = asyncio.Event()
        services.attribs.gate = gate
        record = make_record(layer, services, settings)
        proxy = record.get_child_proxy(4)

        load_task = asyncio.ensure_future(record.load())
        await services.attribs.started.wait()

        assert record.state == RecordState.LOADING
        assert proxy.is_placeholder
        assert proxy.name == "Zoning Districts"

        gate.set()
        await load_task

        assert not proxy.is_placeholder

    @pytest.mark.asyncio
    async def test_group_proxy_stays_placeholder(self, layer, services, settings):
        record = make_record(layer, services, settings)
        await record.load()

        assert record.get_child_proxy(3).is_placeholder

    @pytest.mark.asyncio
    async def test_root_proxy(self, layer, services, settings):
        record = make_record(layer, services, settings)
        await record.load()

        root = record.get_proxy()

        assert root.kind == ProxyKind.SINGLE_LAYER
        assert root.name == "Land Use Service"
        assert root.layer_type == ClientLayerType.ESRI_DYNAMIC
        assert root.symbology == []


class TestVisibleLayers:
    """Tests for the initial and toggled visible sub-layer set."""

    @pytest.mark.asyncio
    async def test_complete_config_nothing_visible(self, layer, services, settings):
        """Test that an empty visible set is sent as the hide-all value."""
        record = make_record(layer, services, settings, complete=True)

        await record.load()

        assert layer.visible_layer_calls == [[-1]]
        assert record.visible_layers == []

    @pytest.mark.asyncio
    async def test_complete_config_applies_visibility(self, layer, services, settings):
        record = make_record(layer, services, settings, complete=True, entries=[
            LayerEntryConfig(index=1),
            LayerEntryConfig(index=2, state_only=True, state=LayerEntryState(visibility=True, query=True)),
        ])

        await record.load()

        assert layer.visible_layer_calls == [[2]]
        assert record.get_child_proxy(2).visibility is True
        assert record.get_child_proxy(4).visibility is False

    @pytest.mark.asyncio
    async def test_incomplete_config_leaves_layer_alone(self, layer, services, settings):
        record = make_record(layer, services, settings)

        await record.load()

        assert layer.visible_layer_calls == []

    @pytest.mark.asyncio
    async def test_toggle_leaf(self, layer, services, settings):
        record = make_record(layer, services, settings)
        await record.load()

        record.get_child_proxy(4).visibility = True
        record.get_child_proxy(2).visibility = True
        record.get_child_proxy(4).visibility = False

        assert layer.visible_layer_calls == [[4], [2, 4], [2]]

        record.get_child_proxy(2).visibility = False
        assert layer.visible_layer_calls[-1] == [-1]


class TestRefinements:
    """Tests for per-leaf background refinements."""

    @pytest.mark.asyncio
    async def test_refinements_fill_leaves(self, layer, services, settings):
        record = make_record(layer, services, settings)
        await record.load()

        await record.wait_for_refinements()

        parcels = record.get_child_proxy(2)
        assert parcels.feature_count == 42
        assert parcels.geometry_type == "esriGeometryPolygon"
        assert parcels.layer_type == ClientLayerType.ESRI_FEATURE
        assert [item.name for item in parcels.symbology] == ["parcels class"]
        assert sorted(services.feature_counter.urls) == [f"{SERVICE_URL}/2", f"{SERVICE_URL}/4"]

    @pytest.mark.asyncio
    async def test_raster_leaf_uses_server_legend(self, layer, services, settings):
        raster = make_feature_data(geometry_type=None)
        raster.layer_type = "Raster Layer"
        services.attribs.sources[4] = FakeAttributeSource(raster)
        record = make_record(layer, services, settings)

        await record.load()
        await record.wait_for_refinements()

        districts = record.get_child_proxy(4)
        assert districts.layer_type == ClientLayerType.ESRI_RASTER
        assert districts.geometry_type is None
        assert [item.name for item in districts.symbology] == ["Legend 4"]

    @pytest.mark.asyncio
    async def test_unknown_leaf_type(self, layer, services, settings):
        odd = make_feature_data()
        odd.layer_type = "Annotation Layer"
        services.attribs.sources[4] = FakeAttributeSource(odd)
        record = make_record(layer, services, settings)

        await record.load()
        await record.wait_for_refinements()

        assert record.get_child_proxy(4).layer_type == ClientLayerType.UNKNOWN

    @pytest.mark.asyncio
    async def test_failed_refinement_is_isolated(self, layer, services, settings, caplog):
        """Test that one failed fetch leaves the record resolved and its siblings intact."""
        services.feature_counter.error = RuntimeError("count unavailable")
        record = make_record(layer, services, settings)

        with caplog.at_level(logging.WARNING):
            await record.load()
            await record.wait_for_refinements()

        parcels = record.get_child_proxy(2)
        assert record.state == RecordState.RESOLVED
        assert parcels.feature_count is None
        assert parcels.geometry_type == "esriGeometryPolygon"
        assert "count unavailable" in caplog.text

    @pytest.mark.asyncio
    async def test_late_results_dropped_after_destroy(self, layer, services, settings):
        gate = asyncio.Event()
        services.feature_counter.gate = gate
        services.attribs.sources[2].gate = gate
        record = make_record(layer, services, settings)
        await record.load()
        parcels = record.get_child_proxy(2).source

        record.destroy()
        gate.set()
        await record.wait_for_refinements()

        assert record.is_destroyed
        assert parcels.feature_count is None
        assert parcels.layer_type is None
        assert parcels.symbology == []

    @pytest.mark.asyncio
    async def test_destroy_before_attributes(self, layer, services, settings):
        gate = asyncio.Event()
        services.attribs.gate = gate
        record = make_record(layer, services, settings)
        proxy = record.get_child_proxy(2)

        load_task = asyncio.ensure_future(record.load())
        await services.attribs.started.wait()
        record.destroy()
        gate.set()
        await load_task

        assert record.state != RecordState.RESOLVED
        assert proxy.is_placeholder
        assert dict(record.feature_classes) == {}

        # a destroyed record never starts over
        await record.load()
        assert layer.load_calls == 1


class TestQueries:
    """Tests for per-index queries and map interaction."""

    @pytest.mark.asyncio
    async def test_queryable(self, layer, services, settings):
        record = make_record(layer, services, settings, entries=[
            {"index": 1},
            {"index": 2, "stateOnly": True, "state": {"query": True}},
        ])
        await record.load()

        assert record.is_queryable(2) is True
        assert record.is_queryable(4) is False

        record.set_queryable(False, 2)
        assert record.get_child_proxy(2).query is False

    @pytest.mark.asyncio
    async def test_scale(self, layer, services, settings):
        record = make_record(layer, services, settings)
        await record.load()

        assert await record.get_scale_set(4) == ScaleSet(min_scale=50000, max_scale=1000)
        assert (await record.is_off_scale(500, 4)).zoom_in is True
        assert (await record.is_off_scale(5000, 4)).off_scale is False

    @pytest.mark.asyncio
    async def test_zoom_to_scale(self, layer, services, settings):
        record = make_record(layer, services, settings)
        await record.load()
        map_view = FakeMapView()

        scale = await record.zoom_to_scale(4, map_view, zoom_in=True)

        assert scale == 1000
        assert map_view.scale_sets == [(ScaleSet(min_scale=50000, max_scale=1000), True)]

    @pytest.mark.asyncio
    async def test_attribute_queries(self, layer, services, settings):
        record = make_record(layer, services, settings)
        await record.load()

        assert await record.aliased_field_name("NAME", 2) == "Parcel Name"
        assert await record.check_date_type("SURVEYED", 2) is True
        formatted = await record.get_child_proxy(2).formatted_attributes
        assert len(formatted["rows"]) == 2

    def test_query_before_load(self, layer, services, settings):
        record = make_record(layer, services, settings)

        with pytest.raises(LayerNotLoadedError):
            record.is_queryable(2)

    @pytest.mark.asyncio
    async def test_true_dynamic(self, layer, services, settings):
        layer.supports_dynamic_layers = False
        record = make_record(layer, services, settings)
        await record.load()

        assert record.is_true_dynamic is False


class TestIdentify:
    @pytest.mark.asyncio
    async def test_identify_buckets(self, layer, services, settings):
        services.identify.hits = [
            IdentifyHit(layer_id=2, value="North lot", attributes={"Object ID": 1, "Parcel Name": "North lot"}),
            IdentifyHit(layer_id=9, value="ignored"),
        ]
        record = make_record(layer, services, settings)
        await record.load()

        bundle = record.identify(IdentifyOptions(layer_ids=[2, 4]))

        assert [result.feature_index for result in bundle.identify_results] == [2, 4]
        assert all(result.is_loading for result in bundle.identify_results)

        await bundle.identify_task

        parcels, districts = bundle.identify_results
        assert services.identify.options.tolerance == 7
        assert parcels.caption == "Land Use Service"
        assert parcels.name == "Parcels"
        assert parcels.is_loading is False
        assert len(parcels.data) == 1
        assert parcels.data[0]["oid"] == 1
        assert parcels.data[0]["symbology"][0].svgcode == "<svg>parcels</svg>"
        assert districts.is_loading is False
        assert districts.data == []

    @pytest.mark.asyncio
    async def test_identify_hit_on_group(self, layer, services, settings):
        """Test that a hit on a group index finishes without touching layer data."""
        services.identify.hits = [
            IdentifyHit(layer_id=3, value="Zoning group"),
            IdentifyHit(layer_id=2, value="North lot", attributes={"Object ID": 1, "Parcel Name": "North lot"}),
        ]
        record = make_record(layer, services, settings)
        await record.load()

        bundle = record.identify(IdentifyOptions(layer_ids=[2, 3]))
        await bundle.identify_task

        parcels, zoning = bundle.identify_results
        assert parcels.is_loading is False
        assert len(parcels.data) == 1
        assert zoning.name == "Zoning"
        assert zoning.is_loading is False
        assert zoning.data == []
