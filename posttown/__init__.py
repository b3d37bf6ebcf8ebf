"""PostTown: spatially-anchored posts and threaded comments for shared towns."""

__version__ = "0.1.0"
