# Revisit Package
from .consts import VERSION

__version__ = VERSION

__all__ = ["VERSION", "__version__"]
