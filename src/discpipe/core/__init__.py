"""Core orchestration.

This module contains the pipeline orchestrator that drives one disc through
identification, extraction, transcoding, relocation and notification, and the
run context that owns the collaborators for a single run.
"""
