import logging
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)


class LayerRecordError(Exception):
    """Base exception for layer record errors"""

    def __init__(
        self,
        message: str,
        error_type: str = "LAYER_RECORD_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_type = error_type
        self.details = details or {}
        super().__init__(message)


class LayerNotLoadedError(LayerRecordError):
    """Raised when layer data is requested before the layer has resolved it"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "LAYER_NOT_LOADED", details)


class UnsupportedOperationError(LayerRecordError):
    """Raised when a proxy is asked for something its current source cannot do"""

    def __init__(self, message: str = "Call not supported.", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "UNSUPPORTED_OPERATION", details)


class LayerStructureError(LayerRecordError):
    """Raised when a layer breaks a structural rule, e.g. no renderer and no url"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "LAYER_STRUCTURE_ERROR", details)


class ServiceRequestError(LayerRecordError):
    """Exception for map service REST errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "SERVICE_REQUEST_ERROR", details)
