"""Command line interface for prledger."""
