from .store import ServerStore
from .partitioner import route_key, route_user

__all__ = ["ServerStore", "route_key", "route_user"]
