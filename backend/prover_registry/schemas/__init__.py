"""
Pydantic schemas package
"""
