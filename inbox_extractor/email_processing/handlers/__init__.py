"""Content handlers: HTML conversion, link discovery, size routing."""
