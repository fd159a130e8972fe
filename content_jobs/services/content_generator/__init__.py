"""Content generation services."""
from content_jobs.services.content_generator.subsection import SubsectionGenerator

__all__ = ["SubsectionGenerator"]
