from .pipeline import IngestionPipeline, IngestResult, StatusResult

__all__ = ["IngestResult", "IngestionPipeline", "StatusResult"]
