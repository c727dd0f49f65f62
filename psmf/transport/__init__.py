from .client import ParameterServerClient
from .local import LocalClient, LocalParameterServer, OutputCollector

__all__ = [
    "ParameterServerClient",
    "LocalClient",
    "LocalParameterServer",
    "OutputCollector",
]
