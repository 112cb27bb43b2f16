"""Client-side consumer for a tool-using agent's event stream."""

__version__ = "0.1.0"
