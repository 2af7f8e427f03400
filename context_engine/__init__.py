"""
Context Engine

Branching conversation trees turned into model-ready context: macros,
session variables, regex rules, preset injection, token limiting and
summary-based compression.
"""

__version__ = "0.1.0"
