from .service import ConversionService
from .models import ConversionOptions, Container, JobResult, JobState, MediaJob, Optimization

__all__ = [
    "ConversionService",
    "ConversionOptions",
    "Container",
    "JobResult",
    "JobState",
    "MediaJob",
    "Optimization",
]
