"""shipyard: turn uploaded Node.js bundles into published container images."""

__version__ = "1.0.0"
