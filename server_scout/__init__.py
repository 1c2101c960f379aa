"""
server-scout: game server discovery, probing, classification and player enrichment.
"""
__version__ = "0.1.0"
