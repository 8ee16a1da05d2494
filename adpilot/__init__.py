"""adpilot — a self-tuning decision loop for ad campaign operations."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("adpilot")
except PackageNotFoundError:
    __version__ = "0.1.0"  # fallback for development
