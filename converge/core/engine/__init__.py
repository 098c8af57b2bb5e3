"""
Engine — compile plans per target and run the resulting scripts.
"""
