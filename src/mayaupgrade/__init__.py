"""Template-driven, resumable upgrade engine for OpenEBS storage resources."""

__version__ = "0.1.0"
