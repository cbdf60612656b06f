"""Command-line interface for kubewire."""
