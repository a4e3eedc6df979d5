from scopescan.models.job import Job
from scopescan.models.photo import Photo
from scopescan.models.embedding import EmbeddingTask, JobEmbedding

__all__ = ["Job", "Photo", "EmbeddingTask", "JobEmbedding"]
