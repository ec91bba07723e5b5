"""edgescan: plugin pipeline that turns market and reference data into ranked trading edges."""

__version__ = "0.4.0"
