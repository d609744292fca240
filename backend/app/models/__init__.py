from .analysis_history import AnalysisHistory, GUID

__all__ = ["AnalysisHistory", "GUID"]
