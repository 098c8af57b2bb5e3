"""
Converge — declarative machine state compiled into checked shell scripts.
"""

__version__ = "0.1.0"
