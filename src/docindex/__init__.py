"""DocIndex - incremental semantic search over Markdown/MDX documentation."""

__version__ = "0.1.0"
