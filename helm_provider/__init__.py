"""
.. include:: ../README.md
"""

__all__ = [
    "chart",
    "controller",
    "exceptions",
    "fetch",
    "helm",
    "identifier",
    "kubeconfig",
    "model",
    "stage",
    "values",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]
