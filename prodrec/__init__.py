"""Client for a hosted product-recommendations (SAR) service."""
from prodrec.config import ClientConfig
from prodrec.errors import InvalidInput, MalformedResponse, NetworkError, ProdRecError, ServiceError, TrainingTimeout
from prodrec.models.recommender import ModelSnapshot, ModelStatus, TrainingParameters
from prodrec.services.endpoint import RecommendationEndpoint, create_or_attach_model
from prodrec.services.model import RecommendationModel
from prodrec.services.normalizer import normalize
from prodrec.services.training import TrainingOutcome, TrainingState

__version__ = "0.1.0"

__all__ = [
    "ClientConfig",
    "InvalidInput",
    "MalformedResponse",
    "ModelSnapshot",
    "ModelStatus",
    "NetworkError",
    "ProdRecError",
    "RecommendationEndpoint",
    "RecommendationModel",
    "ServiceError",
    "TrainingOutcome",
    "TrainingParameters",
    "TrainingState",
    "TrainingTimeout",
    "create_or_attach_model",
    "normalize",
]
