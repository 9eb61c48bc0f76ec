"""
Per-object diffing and assembly of the patch module.
"""

from .diff_compiler import DiffCompiler, DiffRequest, CreateDiffObject
from .module_assembler import ModuleAssembler, KpatchModuleAssembler
from .aggregator import DiffAggregator, AssembledModule

__all__ = ['DiffCompiler', 'DiffRequest', 'CreateDiffObject', 'ModuleAssembler',
           'KpatchModuleAssembler', 'DiffAggregator', 'AssembledModule']
