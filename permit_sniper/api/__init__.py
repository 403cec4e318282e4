"""
HTTP API for permit-sniper (FastAPI).
"""
