from __future__ import annotations

from collections.abc import Collection

from .types import Operation

# nscb_rust accepts one input file per invocation for these.
SINGLE_FILE_OPERATIONS = frozenset(
    {
        Operation.COMPRESS,
        Operation.DECOMPRESS,
        Operation.CONVERT,
        Operation.SPLIT,
        Operation.TRIM,
    }
)


def plan_batches(
    operation: Operation,
    files: list[str],
    single_file_operations: Collection[Operation] = SINGLE_FILE_OPERATIONS,
) -> list[list[str]]:
    if operation in single_file_operations and len(files) > 1:
        return [[file_path] for file_path in files]
    return [list(files)]


def batch_header(index: int, total: int, file_name: str) -> str:
    return f"[File {index + 1}/{total}] {file_name}"
