"""
Blockflow Workflow Engine

A block-based workflow orchestration engine with DAG validation,
layer-synchronous parallel execution, retries, timeouts, and
configurable failure policies.
"""

__version__ = "1.0.0"
