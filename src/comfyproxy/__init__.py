"""Comfy Proxy - templated workflow execution against a remote ComfyUI engine."""

__version__ = "0.1.0"
