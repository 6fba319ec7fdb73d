"""Star-schema warehouse for client program expenditures and grant funding."""

__version__ = "0.1.0"
