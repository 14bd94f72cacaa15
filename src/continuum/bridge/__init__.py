"""Cross-engine context bridging."""

from continuum.bridge.context_bridge import ContextBlock, ContextBridge, extract_code_content

__all__ = ["ContextBlock", "ContextBridge", "extract_code_content"]
