from .assessor import AssessmentRequest, AssessmentResponse, AssessorService

__all__ = [
    "AssessmentRequest",
    "AssessmentResponse",
    "AssessorService",
]
