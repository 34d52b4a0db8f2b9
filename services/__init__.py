from services.pipeline import ContentPipeline
from services.quiz_service import QuizService
from services.spaced_repetition import FlashcardService
from services.deletion_service import DeletionService
from services.consistency_service import ConsistencyService

__all__ = [
    'ContentPipeline',
    'QuizService',
    'FlashcardService',
    'DeletionService',
    'ConsistencyService',
]
