from .ratings_loader import load_ratings

__all__ = ["load_ratings"]
