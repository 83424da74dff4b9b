"""This package bridges Netatmo weather stations to MQTT following the Homie convention."""

try:
    from ._version import __version__
except ImportError:
    # Fallback for development installs
    __version__ = "dev"

__all__ = ["__version__"]
