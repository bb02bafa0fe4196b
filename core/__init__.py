"""
Latency-measurement and change-correlation engine.
"""
