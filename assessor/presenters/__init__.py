from .assessment import SuggestionRow, layer_summary_frame, suggestion_frame, suggestion_rows

__all__ = [
    "SuggestionRow",
    "layer_summary_frame",
    "suggestion_frame",
    "suggestion_rows",
]
