"""
Vauban Relay

Gasless action relay: session-key signed requests are verified and submitted
on-chain by a privileged relayer, with content committed by hash.
"""

__version__ = "0.1.0"
