"""
Services for discovery, probing, classification and enrichment.

This module organizes services into:
- query: UDP wire codec and per-server prober
- discovery: directory (master server) and HTTP listing adapters
- scanner: batch query scheduler driving sweeps
- classification: rule + learned ensemble for game mode and regional affinity
- enrichment: rate-limited, cached player profile lookups
"""
