"""Oracle-backed analysis stages."""
