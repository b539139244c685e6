"""Command line tool for running polls of the helm release provider."""
