"""
Helpers for testing code built on the gateway operator
"""
