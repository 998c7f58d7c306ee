"""Draftforce - resumable orchestration engine for multi-step document authoring."""

__version__ = "0.1.0"
