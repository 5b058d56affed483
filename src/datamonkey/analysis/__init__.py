"""Analysis requests, methods and dataset contracts."""
