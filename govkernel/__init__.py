"""govkernel - runtime policy enforcement for generated text."""

__version__ = "0.1.0"
