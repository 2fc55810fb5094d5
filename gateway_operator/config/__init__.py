"""
Operator config module. Values are read once from config.yaml with environment
variable overrides and exposed as attributes of this module.
"""

# Local
from .config import library_config


# Define __getattr__ on this module to delegate to the library config.
def __getattr__(name):
    if name in library_config or hasattr({}, name):
        return getattr(library_config, name)
    raise AttributeError(f"No such config attribute {name}")


# Only expose the config keys
__all__ = list(library_config.keys())
