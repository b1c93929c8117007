"""
Detecting the package's own version.

The version is determined only once at startup when the code is loaded,
and is used only for self-identification in the API requests and the CLI.
"""
import importlib.metadata

version: str | None = None

try:
    name, *_ = __name__.split('.')  # usually "kinformer", unless renamed/forked.
    version = importlib.metadata.version(name)
except importlib.metadata.PackageNotFoundError:
    pass  # not installed, e.g. when run from a source checkout.
