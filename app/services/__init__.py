from app.services.embedding_service import EmbeddingService, EmbeddingError, get_embedding_service
from app.services.llm_service import LLMService, LLMError, get_llm_service
from app.services.clustering_service import ClusteringService, Location, MemorySnapshot, get_clustering_service
from app.services.synthesis_service import SynthesisService, EventSynthesis, get_synthesis_service
from app.services.graph_store import GraphStore
from app.services.similarity_index import SimilarityIndex
from app.services.event_formation_service import EventFormationService, FormationResult, get_event_formation_service
from app.services.context_inference_service import ContextInferenceService, get_context_inference_service
from app.services.temporal_parser import TemporalParser, TemporalIntent, temporal_parser
from app.services.hybrid_scorer import hybrid_score, HybridScore
from app.services.retrieval_service import RetrievalService, SearchFilters, get_retrieval_service
from app.services.event_retrieval_service import EventRetrievalService, EventSearchFilters, get_event_retrieval_service
from app.services.resurfacing_service import ResurfacingService, ResurfacingResult, get_resurfacing_service
from app.services.task_queue import on_memory_ready, TaskWorker, get_task_worker

__all__ = [
    "EmbeddingService",
    "EmbeddingError",
    "get_embedding_service",
    "LLMService",
    "LLMError",
    "get_llm_service",
    # Event formation
    "ClusteringService",
    "Location",
    "MemorySnapshot",
    "get_clustering_service",
    "SynthesisService",
    "EventSynthesis",
    "get_synthesis_service",
    "GraphStore",
    "SimilarityIndex",
    "EventFormationService",
    "FormationResult",
    "get_event_formation_service",
    # Context inference
    "ContextInferenceService",
    "get_context_inference_service",
    # Retrieval
    "TemporalParser",
    "TemporalIntent",
    "temporal_parser",
    "hybrid_score",
    "HybridScore",
    "RetrievalService",
    "SearchFilters",
    "get_retrieval_service",
    "EventRetrievalService",
    "EventSearchFilters",
    "get_event_retrieval_service",
    # Resurfacing
    "ResurfacingService",
    "ResurfacingResult",
    "get_resurfacing_service",
    # Background processing
    "on_memory_ready",
    "TaskWorker",
    "get_task_worker",
]
