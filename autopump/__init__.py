"""
AutoPump - automated creator-fee claim, treasury split, buyback and burn
for a pump.fun token on Solana.
"""

__version__ = "1.0.0"
