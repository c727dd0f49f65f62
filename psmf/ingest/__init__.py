from .source import SourcePartition, split_sources

__all__ = ["SourcePartition", "split_sources"]
