"""
Protocol interfaces for the engine's external collaborators.

The engine depends only on these protocols; concrete adapters live in
draftforce.infrastructure and are wired by the application factory.
"""
