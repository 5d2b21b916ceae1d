"""
FastAPI read API over the HighestVoice replica.
"""
