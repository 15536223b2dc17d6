"""icalrelay: relay calendar feeds through a pipeline of transformation modules."""

__version__ = "0.1.0"
