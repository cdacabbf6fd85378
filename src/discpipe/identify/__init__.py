"""Disc identification.

Mounting, structural probing of the disc, metadata providers, the AI agent
and MusicBrainz, combined by the resolver into a confidence-gated cascade.
"""
