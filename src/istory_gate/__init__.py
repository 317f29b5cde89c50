"""Server-side authorization gate for iStory's privileged and paywalled routes."""

__version__ = "0.1.0"
