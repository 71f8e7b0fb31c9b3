"""space-press: publish recorded live audio conversations as articles."""

__version__ = "0.1.0"
