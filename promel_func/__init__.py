"""ProMEL AI dashboard backend (Azure Functions app)."""

__version__ = "1.0.0"
