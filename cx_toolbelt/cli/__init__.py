"""Command line interface of the toolbelt."""
