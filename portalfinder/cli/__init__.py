"""Command-line interface for PortalFinder."""
