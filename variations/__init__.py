"""
Variation generation service.

Lays out N variation slots around a source image, drives the shared source
through upload, style analysis and concept generation, and reconciles
renderer results back into placeholder state.
"""
