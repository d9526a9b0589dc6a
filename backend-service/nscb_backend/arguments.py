from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from .types import Operation, RunOptions
from .utils import display_name, parent_dir

logger = logging.getLogger(__name__)

TRIM_MODE_FLAGS = {
    "trim": "--xci_trim",
    "super_trim": "--xci_super_trim",
    "untrim": "--xci_untrim",
}
DEFAULT_MERGE_FORMAT = "xci"
DEFAULT_MERGE_BUFFER = 65536


def output_directory(files: list[str], options: RunOptions) -> str | None:
    if options.output:
        return options.output
    if files:
        return parent_dir(files[0])
    return None


def build_nscb_args(
    operation: Operation,
    files: list[str],
    options: RunOptions,
    *,
    keys_path: Path | None = None,
) -> list[str]:
    args: list[str] = []

    if operation is Operation.COMPRESS:
        args.extend(["-z", *files])
        if options.level is not None:
            args.extend(["--level", str(options.level)])
    elif operation is Operation.DECOMPRESS:
        args.extend(["--decompress", *files])
    elif operation is Operation.MERGE:
        args.extend(["-d", *files])
        if options.format:
            args.extend(["-t", options.format])
        if options.nodelta:
            args.append("-n")
    elif operation is Operation.CONVERT:
        args.extend(["-c", *files])
        if options.format:
            args.extend(["-t", options.format])
    elif operation is Operation.SPLIT:
        args.extend(["--splitter", *files])
    elif operation is Operation.CREATE:
        # files[0] is a split output folder; the NSP lands next to it unless an output dir is given.
        folder = files[0]
        out_dir = options.output or parent_dir(folder)
        out_nsp = os.path.join(out_dir, f"{display_name(folder)}.nsp")
        args.extend(["--create", out_nsp, "--ifolder", folder])
    elif operation is Operation.TRIM:
        flag = TRIM_MODE_FLAGS.get(options.trim_mode or "trim", TRIM_MODE_FLAGS["trim"])
        args.extend([flag, *files])

    if operation is not Operation.CREATE:
        out_dir = output_directory(files, options)
        if out_dir:
            args.extend(["-o", out_dir])

    if options.buffer:
        args.extend(["-b", str(options.buffer)])

    if keys_path is not None:
        args.extend(["--keys", str(keys_path)])

    return args


def build_squirrel_merge_args(files: list[str], options: RunOptions, *, list_path: Path) -> list[str]:
    args = [
        "-dmul",
        "calculate",
        "-tfile",
        str(list_path),
        "-t",
        options.format or DEFAULT_MERGE_FORMAT,
    ]
    out_dir = output_directory(files, options)
    if out_dir:
        args.extend(["-o", out_dir])
    args.extend(["-b", str(options.buffer or DEFAULT_MERGE_BUFFER)])
    return args


def write_file_list(files: list[str], *, directory: str | None = None) -> Path:
    """Write the inputs one per line to a fresh temporary file and return its path."""
    fd, raw_path = tempfile.mkstemp(prefix="nsz-merge-", suffix=".txt", dir=directory)
    with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as handle:
        handle.write("\n".join(files))
    return Path(raw_path)


def remove_file_list(path: Path) -> bool:
    try:
        path.unlink()
    except FileNotFoundError:
        return True
    except OSError:
        logger.warning("Could not remove temporary file list path=%s", path)
        return False
    return True
