"""Product reviews REST API with a Redis read-through cache."""

__version__ = "1.0.0"
