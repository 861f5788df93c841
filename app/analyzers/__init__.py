"""Error classification and workflow patching."""

from app.analyzers.error_classifier import classify, get_error_context
from app.analyzers.patch_engine import apply_fix, generate_patch_description, validate_workflow

__all__ = ["classify", "get_error_context", "apply_fix", "generate_patch_description", "validate_workflow"]
