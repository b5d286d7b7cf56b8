# Visible-layer value understood by map services as "draw no sub-layers"
HIDE_ALL_SENTINEL = -1

WILDCARD_OUTFIELDS = "*"

# Default state for sub-layers the configuration says nothing about.
# Snapshot and bounding box don't apply to child layers.
DUMMY_SUBLAYER_STATE = {
    "opacity": 1.0,
    "visibility": False,
    "query": False,
}

# Layer kinds as reported by the map service REST endpoint
SERVER_FEATURE_LAYER = "Feature Layer"
SERVER_RASTER_LAYER = "Raster Layer"

DATE_FIELD_TYPE = "esriFieldTypeDate"
