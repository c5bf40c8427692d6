"""
safety — Location-based safety scoring.
"""
