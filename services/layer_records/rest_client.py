"""
REST clients for the two map service calls records make most often.

- RestFeatureCounter: number of features in a (sub-)layer
- RestLegendService: server legend of a map service, in local format
"""

import logging
from typing import Any, Optional

import aiohttp

from utils.error_handlers import ServiceRequestError

from .config import LayerRecordSettings, get_settings

logger = logging.getLogger(__name__)


def legend_item_to_svg(item: dict) -> str:
    """Wrap a server legend image in an SVG document."""
    width = item.get("width") or 20
    height = item.get("height") or 20
    content_type = item.get("contentType") or "image/png"
    href = f"data:{content_type};base64,{item.get('imageData', '')}"
    return (
        f'<svg xmlns="http://www.w3.org/2000/svg" xmlns:xlink="http://www.w3.org/1999/xlink" '
        f'width="{width}" height="{height}">'
        f'<image width="{width}" height="{height}" xlink:href="{href}"/></svg>'
    )


class _RestClient:
    def __init__(self, settings: Optional[LayerRecordSettings] = None):
        self.settings = settings or get_settings()

    async def _get_json(self, url: str, params: dict) -> dict[str, Any]:
        params = dict(params)
        params.setdefault("f", "json")
        if self.settings.api_key:
            params["token"] = self.settings.api_key

        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    url,
                    params=params,
                    timeout=aiohttp.ClientTimeout(total=self.settings.request_timeout_seconds),
                ) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        raise ServiceRequestError(
                            f"Request to {url} failed with status {response.status}",
                            {"url": url, "status": response.status, "body": error_text},
                        )

                    result = await response.json(content_type=None)

                    if "error" in result:
                        raise ServiceRequestError(
                            f"Map service error: {result['error']}",
                            {"url": url, "error": result["error"]},
                        )
                    return result

        except aiohttp.ClientError as e:
            logger.error(f"Request to {url} failed: {e}")
            raise ServiceRequestError(f"Request to {url} failed: {e}", {"url": url}) from e


class RestFeatureCounter(_RestClient):
    """Counts features through the layer's query endpoint."""

    async def get_feature_count(self, url: str) -> int:
        result = await self._get_json(
            f"{url.rstrip('/')}/query",
            {"where": "1=1", "returnCountOnly": "true"},
        )
        count = int(result.get("count", 0))
        logger.debug(f"Feature count for {url}: {count}")
        return count


class RestLegendService(_RestClient):
    """Reads a map service legend and converts it for one sub-layer."""

    async def map_server_to_local_legend(self, url: str, index: int) -> dict:
        result = await self._get_json(f"{url.rstrip('/')}/legend", {})

        for layer in result.get("layers", []):
            if layer.get("layerId") == index:
                return {
                    "layers": [{
                        "layerId": index,
                        "legend": [
                            {"label": item.get("label", ""), "svgcode": legend_item_to_svg(item)}
                            for item in layer.get("legend", [])
                        ],
                    }]
                }

        logger.warning(f"Legend for {url} has no entry for sub-layer {index}")
        return {"layers": [{"layerId": index, "legend": []}]}
