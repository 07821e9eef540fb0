"""Trading journal backend: trade lifecycle, metrics, CSV transcoding and confluence scoring."""

__version__ = "1.0.0"
