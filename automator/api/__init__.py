"""
Automator control API.
"""
