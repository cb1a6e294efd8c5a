"""
Core infrastructure: configuration, logging, errors and the snapshot cache
"""
