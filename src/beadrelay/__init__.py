"""beadrelay: bead-mediated coordination for sequential agent workers."""

__version__ = "0.1.0"
