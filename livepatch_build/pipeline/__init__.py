"""
End-to-end live-patch build: staging workspace and stage orchestration.
"""

from .workspace import BuildWorkspace
from .orchestrator import LivepatchPipeline, make_module_name

__all__ = ['BuildWorkspace', 'LivepatchPipeline', 'make_module_name']
