"""GitHub App installation token flow for SDK repository automation."""

__version__ = "0.1.0"
