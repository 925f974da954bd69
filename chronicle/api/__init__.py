"""
HTTP layer: FastAPI application over the EvolutionEngine.
"""
