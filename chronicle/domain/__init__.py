"""
Domain helpers shared across layers.
"""
