"""Page-sized pagination for continuous rich-text editing surfaces."""

from pageflow.config import PageConfig, load_config
from pageflow.orchestrator import PaginationOrchestrator

__all__: list[str] = ["PageConfig", "PaginationOrchestrator", "load_config"]
