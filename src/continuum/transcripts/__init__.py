"""Transcript discovery and liveness probes."""

from continuum.transcripts.locator import (
    TranscriptLocator,
    normalize_workspace_path,
    workspace_slug,
)

__all__ = ["TranscriptLocator", "normalize_workspace_path", "workspace_slug"]
