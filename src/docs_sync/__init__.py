"""Keep a local cache of upstream documentation sources synchronized."""

__version__ = "0.1.0"
