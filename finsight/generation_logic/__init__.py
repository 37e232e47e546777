"""Generation logic package.

This package groups the helpers that orchestrate the analysis workflow
(document preparation, context assembly, session state). Keeping them here
allows `finsight/api/routes.py` to stay minimal and focused on HTTP routing.
"""

from .context_preparation import build_analysis_request  # noqa: F401
from .file_processing import prepare_documents  # noqa: F401
