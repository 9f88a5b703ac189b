"""
Core architecture components of the messaging service.
"""
