"""
Vagabond character builder core: state, validation and the seven builder
steps, independent of any UI.
"""

from char_builder.services.builder_session import BuilderSession

__version__ = "0.1.0"

__all__ = ["BuilderSession", "__version__"]
