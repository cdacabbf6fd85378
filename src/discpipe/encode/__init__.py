"""Transcoders selected once per job from the configuration."""
