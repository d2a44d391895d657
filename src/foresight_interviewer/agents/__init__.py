"""
Agents module containing the question generation services.
"""
