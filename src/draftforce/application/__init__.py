"""Application layer: settings, factory and executor service."""
