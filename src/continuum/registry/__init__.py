"""Session registry: (conversation, engine) -> live engine session."""

from continuum.registry.session_registry import SessionRegistry, extract_title

__all__ = ["SessionRegistry", "extract_title"]
