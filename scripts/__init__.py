"""Log archiving automation scripts package.

Modules here are runnable scripts as well as importable modules (for pytest
and the ``log-archive`` console entry point).
"""
