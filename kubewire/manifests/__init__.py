"""Tutorial manifests shipped as package data."""
