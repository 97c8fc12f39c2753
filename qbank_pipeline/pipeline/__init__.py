"""Per-document workflow, bulk import runner and standalone stages."""

from .dependencies import PipelineDependencies, build_dependencies
from .graph import build_document_graph, create_document_app
from .runner import load_source, run_audit, run_import
from .state import DocumentState, create_initial_state

__all__ = [
    "PipelineDependencies",
    "build_dependencies",
    "build_document_graph",
    "create_document_app",
    "DocumentState",
    "create_initial_state",
    "load_source",
    "run_import",
    "run_audit",
]
