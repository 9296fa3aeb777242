"""Command-line interface for agentwire."""
