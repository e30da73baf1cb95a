"""regbridge: one registry discovery protocol over many package registries."""

__version__ = "0.1.0"
