"""Event routing and watch registration for the CassandraDatacenter
operator.
"""

from .version import __version__

__all__ = ("__version__",)
