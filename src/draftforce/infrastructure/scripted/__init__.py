"""Scenario-driven collaborators for running the engine without a model backend."""
