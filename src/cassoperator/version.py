"""Version of the installed ``cass-operator-watches`` distribution."""

__all__ = ("__version__",)

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("cass-operator-watches")
except PackageNotFoundError:
    # Running from a source checkout that was never installed.
    __version__ = "0.0.0"
