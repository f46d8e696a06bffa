"""Package metadata and naming constants."""

PACKAGE_NAME = "machina-orchestrator"
PACKAGE_NAME_SHORT = "machina"
__version__ = "1.0.0"
VERSION = __version__
DESCRIPTION = "Deployment & provisioning orchestrator for cloud machines"
