"""Meeting availability and booking engine for the social inbox."""

__version__ = "0.1.0"
