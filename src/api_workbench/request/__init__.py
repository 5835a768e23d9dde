from api_workbench.request.binder import ParameterBinder
from api_workbench.request.builder import build_request
from api_workbench.request.models import (
    BoundRequest,
    RequestDescriptor,
    RequestOverrides,
    StaticAuth,
)

__all__ = [
    "BoundRequest",
    "ParameterBinder",
    "RequestDescriptor",
    "RequestOverrides",
    "StaticAuth",
    "build_request",
]
