"""Command line tools for syncloop."""
