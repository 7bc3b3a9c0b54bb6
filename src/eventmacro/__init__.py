"""eventmacro - declarative desktop automation driven by JSON events."""

__version__ = "0.1.0"
