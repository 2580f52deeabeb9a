"""Building blocks for a daemonless container image builder."""

__version__ = "0.1.0"
__all__ = [
    "composite_cache",
    "logsetup",
    "push",
    "reference",
    "source_image",
    "stage_config",
    "stage_deps",
]