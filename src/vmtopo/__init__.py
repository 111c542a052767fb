"""vmtopo: container-to-microVM network topology wiring."""

__version__ = "0.1.0"
