# Public surface of the engine package.
from ._scoring import resolve_score, recommended_score, current_score
from ._merger import merge
from ._validator import validate
from ._differ import diff
from .facade import Engine

__all__ = ["Engine", "resolve_score", "recommended_score", "current_score", "merge", "validate", "diff"]
