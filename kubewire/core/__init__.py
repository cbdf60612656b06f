"""Core abstractions: schema protocols, configuration, and errors."""
