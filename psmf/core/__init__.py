from .types import Rating, EndMarker, ModelRecord, Vector

__all__ = ["Rating", "EndMarker", "ModelRecord", "Vector"]
