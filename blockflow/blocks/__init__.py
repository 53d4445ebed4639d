"""Block executor contract, registry and generic built-in blocks."""

from blockflow.blocks.registry import (
    BaseBlockExecutor,
    BlockExecutor,
    BlockMetadata,
    BlockRegistry,
)
from blockflow.blocks.builtin import (
    CollectOutputBlock,
    PassThroughBlock,
    StaticInputBlock,
    register_builtin_blocks,
)

__all__ = [
    "BaseBlockExecutor",
    "BlockExecutor",
    "BlockMetadata",
    "BlockRegistry",
    "CollectOutputBlock",
    "PassThroughBlock",
    "StaticInputBlock",
    "register_builtin_blocks",
]
