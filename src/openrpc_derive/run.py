"""Top-level module for deriving OpenRPC schemas from Python source files."""

from __future__ import annotations

import argparse
import ast
import glob
import logging
import os.path
import subprocess
import tempfile
from pathlib import Path

from openrpc_derive.errors import DeriveError, DuplicateNameError, SourceParseError
from openrpc_derive.helper import DOCUMENT_RPC_NAME, SCHEMA_FN_NAME, has_marker
from openrpc_derive.rewriter import is_interface, process

logger = logging.getLogger(__name__)

PY_SUFFIX = ".py"
GENERATED_SUFFIX = "_openrpc.py"


def parse_source(source: str, filename: str = "<unknown>") -> ast.Module:
    """Parse Python source text.

    Args:
        source (str): The source text.
        filename (str, optional): The file name, for diagnostics. Defaults to "<unknown>".

    Raises:
        SourceParseError: If the source is not valid Python.

    Returns:
        ast.Module: The syntax tree.
    """
    try:
        return ast.parse(source, filename=filename)
    except SyntaxError as e:
        error = SourceParseError.from_syntax_error(e)
        error.filename = filename
        raise error from e


def has_derivations(tree: ast.Module) -> bool:
    """Check whether a module has top-level declarations annotated with `@document_rpc`."""
    return any(has_marker(statement, DOCUMENT_RPC_NAME) for statement in tree.body)


def _import_position(body: list[ast.stmt]) -> int:
    """Index after the leading docstring and imports of a module body."""
    position = 0
    if body and isinstance(body[0], ast.Expr) and isinstance(body[0].value, ast.Constant):
        if isinstance(body[0].value.value, str):
            position = 1

    while position < len(body) and isinstance(body[position], (ast.Import, ast.ImportFrom)):
        position += 1

    return position


def transform_module(tree: ast.Module) -> ast.Module:
    """Process every `@document_rpc` declaration of a module.

    Processed declarations are replaced in place by the generated code. The
    imports needed by the generated code are added after the leading imports of
    the module, skipping the ones that are already present.

    Args:
        tree (ast.Module): The module. It is not modified.

    Raises:
        DeriveError: If any declaration cannot be processed, or two interfaces
            would re-export `gen_schema` from the same module.

    Returns:
        ast.Module: The transformed module.
    """
    body: list[ast.stmt] = []
    imports: list[ast.stmt] = []
    known_imports = {
        ast.dump(statement) for statement in tree.body if isinstance(statement, (ast.Import, ast.ImportFrom))
    }
    reexported_by: str | None = None

    for statement in tree.body:
        if not has_marker(statement, DOCUMENT_RPC_NAME):
            body.append(statement)
            continue

        generated = process(statement)

        if isinstance(statement, ast.ClassDef) and is_interface(statement):
            if reexported_by is not None:
                raise DuplicateNameError(
                    f"'{statement.name}' re-exports '{SCHEMA_FN_NAME}', which is already re-exported for "
                    f"'{reexported_by}'; declare one interface per module",
                    statement,
                )
            reexported_by = statement.name

        for import_statement in generated.imports:
            key = ast.dump(import_statement)
            if key not in known_imports:
                known_imports.add(key)
                imports.append(import_statement)

        body.extend(generated.body)

    position = _import_position(body)
    module = ast.Module(body=[*body[:position], *imports, *body[position:]], type_ignores=[])
    return ast.fix_missing_locations(module)


def transform_source(source: str, filename: str = "<unknown>") -> str:
    """Derive OpenRPC schemas for all `@document_rpc` declarations of a module.

    Args:
        source (str): The module source text.
        filename (str, optional): The file name, for diagnostics. Defaults to "<unknown>".

    Raises:
        DeriveError: If the source cannot be parsed or processed.

    Returns:
        str: The transformed module source.
    """
    tree = parse_source(source, filename)
    try:
        module = transform_module(tree)
    except DeriveError as e:
        e.filename = filename
        raise
    return ast.unparse(module) + "\n"


def format_outputs(raw_input: str) -> str:
    """Formats raw input using ruff.

    Args:
        raw_input (str): The unformatted input.

    Returns:
        str: The formatted outputs, or the raw input if ruff is not available or fails.
    """
    with tempfile.NamedTemporaryFile(mode="w", suffix=PY_SUFFIX, delete=False, encoding="utf-8") as f:
        temp_path = Path(f.name)
        f.write(raw_input)

    try:
        # Sort imports first, the generated ones are appended after the existing ones.
        subprocess.run(
            ["ruff", "check", "--fix", "--select", "I", str(temp_path)],
            capture_output=True,
            check=False,
        )

        subprocess.run(
            ["ruff", "format", str(temp_path)],
            capture_output=True,
            check=True,
        )

        return temp_path.read_text(encoding="utf-8")

    except FileNotFoundError:
        logger.warning("ruff not found, skipping formatting of generated output")
        return raw_input
    except subprocess.CalledProcessError as e:
        logger.error(f"Ruff formatting failed: {e}")
        logger.error(f"Stdout: {e.stdout.decode('utf-8', errors='replace')}")
        logger.error(f"Stderr: {e.stderr.decode('utf-8', errors='replace')}")
        return raw_input

    finally:
        temp_path.unlink(missing_ok=True)


def output_path_for(path: str, output_dir: str = "", common_base: str | None = None) -> str:
    """Determine where the derived module of a source file is written.

    E.g. `api/calc.py` becomes `api/calc_openrpc.py`, or `<output_dir>/api/calc_openrpc.py`
    when writing to an output directory, relative to `common_base`.

    Args:
        path (str): The source file.
        output_dir (str, optional): Directory for all outputs. Defaults to "", beside the source.
        common_base (str | None, optional): Base directory whose structure is preserved below `output_dir`.

    Returns:
        str: The output file path.
    """
    stem = os.path.splitext(os.path.basename(path))[0]
    file_name = f"{stem}{GENERATED_SUFFIX}"

    if not output_dir:
        return os.path.join(os.path.dirname(path), file_name)

    if common_base:
        rel_dir = os.path.dirname(os.path.relpath(os.path.abspath(path), common_base))
        return os.path.join(output_dir, rel_dir, file_name)

    return os.path.join(output_dir, file_name)


def find_source_files(paths: list[str], excludes: list[str], root_directory: str, recursive: bool) -> list[str]:
    """Resolve paths, directories and glob expressions to a sorted list of Python source files.

    Already derived modules (`*_openrpc.py`) are never included.

    Args:
        paths (list[str]): Paths, directories or glob expressions to search.
        excludes (list[str]): Paths or glob expressions to exclude.
        root_directory (str): The directory that relative paths are resolved against.
        recursive (bool): Whether to search directories and `**` globs recursively.

    Returns:
        list[str]: The source files.
    """
    excluded_paths: set[str] = set()
    for exclude in excludes:
        exclude_path = os.path.join(root_directory, exclude)
        if os.path.isfile(exclude_path):
            excluded_paths.add(exclude_path)
        else:
            excluded_paths = excluded_paths.union(glob.glob(exclude_path, recursive=recursive))

    search_paths: set[str] = set()
    for path in paths:
        search_path = os.path.join(root_directory, path)

        if recursive and os.path.isdir(search_path):
            for root, _, files in os.walk(search_path):
                for file in files:
                    if file.endswith(PY_SUFFIX):
                        search_paths.add(os.path.join(root, file))
        elif os.path.isdir(search_path):
            for file in os.listdir(search_path):
                file_path = os.path.join(search_path, file)
                if os.path.isfile(file_path) and file.endswith(PY_SUFFIX):
                    search_paths.add(file_path)
        else:
            search_paths = search_paths.union(glob.glob(search_path, recursive=recursive))

    valid_paths = {
        path
        for path in search_paths - excluded_paths
        if path.endswith(PY_SUFFIX) and not path.endswith(GENERATED_SUFFIX)
    }
    return sorted(valid_paths)


def derive_file(path: str, output_path: str, skip_format: bool = False) -> bool:
    """Derive the schemas of one source file.

    Args:
        path (str): The source file.
        output_path (str): Where to write the derived module.
        skip_format (bool, optional): Skip formatting with ruff. Defaults to False.

    Raises:
        DeriveError: If the file cannot be parsed or processed.

    Returns:
        bool: True, if an output was written. Files without `@document_rpc` declarations are skipped.
    """
    with open(path, encoding="utf8") as f:
        source = f.read()

    tree = parse_source(source, path)
    if not has_derivations(tree):
        logger.debug("Skipping '%s': no @%s declarations.", path, DOCUMENT_RPC_NAME)
        return False

    try:
        output = ast.unparse(transform_module(tree)) + "\n"
    except DeriveError as e:
        e.filename = path
        raise

    if not skip_format:
        output = format_outputs(output)

    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
    with open(output_path, "w", encoding="utf8") as output_file:
        output_file.write(output)

    logger.info("Wrote derived module to '%s'.", output_path)
    return True


def run(args: argparse.Namespace, root_directory: str) -> list[str]:
    """Run the derivation on a set of paths that point to Python sources.

    Uses `derive_file` on each input file. Stops at the first error.

    Args:
        args (argparse.Namespace): The arguments that were passed when calling the generator.
        root_directory (str): The directory, from which the generator is executed.

    Raises:
        DeriveError: If any file cannot be parsed or processed.

    Returns:
        list[str]: The written output files.
    """
    paths: list[str] = args.paths
    excludes: list[str] = getattr(args, "excludes", [])
    output_dir: str = getattr(args, "output_dir", "")
    recursive: bool = getattr(args, "recursive", False)
    skip_format: bool = getattr(args, "skip_format", False)

    valid_paths = find_source_files(paths, excludes, root_directory, recursive)
    logger.info("Found %d source file(s).", len(valid_paths))

    common_base = None
    if output_dir and valid_paths:
        directories = [os.path.dirname(os.path.abspath(path)) for path in valid_paths]
        common_base = os.path.commonpath(directories)

    if output_dir and not os.path.isabs(output_dir):
        output_dir = os.path.join(root_directory, output_dir)

    written: list[str] = []
    for path in valid_paths:
        output_path = output_path_for(path, output_dir, common_base)
        if derive_file(path, output_path, skip_format=skip_format):
            written.append(output_path)

    logger.info("Derived %d module(s).", len(written))
    return written
