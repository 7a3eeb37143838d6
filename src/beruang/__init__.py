"""Beruang: hybrid intent routing for the Beruang finance chat assistant.

A message is answered either by a pre-authored local reply (fast, free)
or by a remote LLM (capable, costly). The local intent classifier's
answer is only served when it passes the out-of-distribution checks.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
