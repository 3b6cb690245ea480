"""verabot: command-dispatch chat bot for dares and quotes."""

__version__ = "1.0.0"
