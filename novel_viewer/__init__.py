"""Novel Viewer - paginated and scrolling reader for long text documents."""

__version__ = "0.1.0"
