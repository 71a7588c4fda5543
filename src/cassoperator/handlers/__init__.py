"""Kopf entry point for the cass-operator watches.

Run with ``kopf run -m cassoperator.handlers``. Importing this module
registers every watch with kopf's default registry.
"""

__all__ = ("registrar",)

from cassoperator.startup import start_operator

registrar = start_operator()
