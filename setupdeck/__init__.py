# SetupDeck - Tab & Script Orchestration for Machine Setup

# Import subpackages to ensure they are discovered by the build system
from . import cli, core, lib, models, services
from .version import __version__

__all__ = ["cli", "core", "lib", "models", "services", "__version__"]
