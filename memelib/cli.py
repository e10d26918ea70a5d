"""
CLI interface for the meme library.

Usage:
    memelib add cat.png "cat meme" -t animal:cat
    memelib search "animal:cat"
    memelib get 12
"""

import atexit
import json
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .errors import LibraryError
from .library import Library
from .logging_config import configure_quiet_mode, enable_debug_mode
from .types import Meme, SearchMode, Tag


# Configure quiet mode by default
# Set MEMELIB_VERBOSE=1 to enable debug mode via environment
if os.environ.get("MEMELIB_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from . import __version__
        print(f"memelib {__version__}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_store_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _get_json_output() -> bool:
    return _json_output


def _store_callback(value: Optional[Path]):
    global _store_override
    if value is not None:
        _store_override = value


def _get_store_override() -> Optional[Path]:
    return _store_override


app = typer.Typer(
    name="memelib",
    help="Tagged meme library.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="MEMELIB_DATA_DIR",
        help="Path to the library data directory",
        callback=_store_callback,
        is_eager=True,
    )] = None,
):
    """Tagged meme library."""


# -----------------------------------------------------------------------------
# Common Options
# -----------------------------------------------------------------------------

StoreOption = Annotated[
    Optional[Path],
    typer.Option(
        "--store", "-s",
        envvar="MEMELIB_DATA_DIR",
        help="Path to the library data directory (default: ~/.memelib/)"
    )
]

TagOption = Annotated[
    Optional[list[str]],
    typer.Option(
        "--tag", "-t",
        help="Tag as namespace:value (repeatable)"
    )
]


def _get_library(store: Optional[Path]) -> Library:
    """Open the library, closing it again at interpreter exit."""
    actual_store = store if store is not None else _get_store_override()
    try:
        lib = Library(actual_store)
    except LibraryError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    atexit.register(lib.close)
    return lib


@contextmanager
def _handle_errors():
    """Turn library errors into a one-line message and exit code 1."""
    try:
        yield
    except LibraryError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


def _parse_tags(tags: Optional[list[str]]) -> Optional[list[Tag]]:
    """Parse namespace:value options. None when no --tag was given."""
    if tags is None:
        return None
    return [Tag.parse(t) for t in tags]


def _echo_json(data) -> None:
    typer.echo(json.dumps(data, ensure_ascii=False, indent=2))


def _format_meme(meme: Meme) -> str:
    lines = [str(meme)]
    if meme.desc:
        lines.append(f"       {meme.desc}")
    if meme.tags:
        lines.append("       " + " ".join(str(t) for t in meme.tags))
    return "\n".join(lines)


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command()
def add(
    file: Annotated[Path, typer.Argument(help="File to add to the library")],
    summary: Annotated[str, typer.Argument(help="Short summary (searchable)")],
    desc: Annotated[str, typer.Option("--desc", "-d", help="Long description (searchable)")] = "",
    tag: TagOption = None,
    remove: Annotated[bool, typer.Option(
        "--remove", help="Delete the source file after it is stored"
    )] = False,
    extra: Annotated[Optional[str], typer.Option(
        "--extra", help="Opaque extra data stored with the meme"
    )] = None,
    store: StoreOption = None,
):
    """
    Add a file to the library.

    \b
    Examples:
        memelib add cat.png "cat meme" -t animal:cat -t mood:grumpy
        memelib add ~/Downloads/x.gif "x" --remove
    """
    lib = _get_library(store)
    with _handle_errors():
        meme_id = lib.add_meme(
            file, summary, desc, tags=_parse_tags(tag) or [],
            remove_after_add=remove, extra_data=extra,
        )
    if _get_json_output():
        _echo_json({"id": meme_id})
    else:
        typer.echo(meme_id)


@app.command()
def update(
    id: Annotated[int, typer.Argument(help="Meme id")],
    summary: Annotated[Optional[str], typer.Option("--summary", help="New summary")] = None,
    desc: Annotated[Optional[str], typer.Option("--desc", "-d", help="New description")] = None,
    tag: Annotated[Optional[list[str]], typer.Option(
        "--tag", "-t",
        help="Replace all tags with these (namespace:value, repeatable)"
    )] = None,
    clear_tags: Annotated[bool, typer.Option(
        "--clear-tags", help="Remove every tag"
    )] = False,
    extra: Annotated[Optional[str], typer.Option("--extra", help="New extra data")] = None,
    store: StoreOption = None,
):
    """
    Update a meme. Options not given leave the field unchanged.

    \b
    Examples:
        memelib update 12 --desc "new desc"
        memelib update 12 -t animal:cat -t animal:dog   # replaces all tags
        memelib update 12 --clear-tags
    """
    if clear_tags and tag:
        typer.echo("Error: Specify either --tag or --clear-tags, not both", err=True)
        raise typer.Exit(1)
    lib = _get_library(store)
    with _handle_errors():
        tags = [] if clear_tags else _parse_tags(tag)
        meme = lib.update_meme(id, summary=summary, desc=desc, tags=tags, extra_data=extra)
    if _get_json_output():
        _echo_json(meme.to_dict())
    else:
        typer.echo(_format_meme(meme))


@app.command()
def fav(
    id: Annotated[int, typer.Argument(help="Meme id")],
    off: Annotated[bool, typer.Option("--off", help="Remove from favorites")] = False,
    store: StoreOption = None,
):
    """Mark a meme as favorite (or --off to unmark)."""
    lib = _get_library(store)
    with _handle_errors():
        lib.set_favorite(id, not off)


@app.command()
def trash(
    id: Annotated[int, typer.Argument(help="Meme id")],
    restore: Annotated[bool, typer.Option("--restore", help="Take the meme out of the trash")] = False,
    store: StoreOption = None,
):
    """Move a meme to the trash (or --restore it)."""
    lib = _get_library(store)
    with _handle_errors():
        lib.set_trash(id, not restore)


@app.command()
def search(
    statement: Annotated[str, typer.Argument(help="Search statement (empty matches all)")] = "",
    page: Annotated[int, typer.Option("--page", "-p", help="Page number, starting at 0")] = 0,
    mode: Annotated[SearchMode, typer.Option(
        "--mode", "-m",
        case_sensitive=False,
        help="Which memes to search"
    )] = SearchMode.NORMAL,
    show_tags: Annotated[bool, typer.Option("--tags", help="Show tags for each result")] = False,
    store: StoreOption = None,
):
    """
    Search memes by text and tags.

    \b
    Examples:
        memelib search cat                  # summary, desc or tag value contains "cat"
        memelib search "animal:cat -dog"    # tagged animal:cat, not mentioning dog
        memelib search --mode OnlyTrash
    """
    lib = _get_library(store)
    with _handle_errors():
        memes = lib.search_memes(statement, page, mode, with_tags=show_tags or _get_json_output())
    if _get_json_output():
        _echo_json([m.to_dict() for m in memes])
    else:
        for meme in memes:
            typer.echo(_format_meme(meme) if show_tags else str(meme))


@app.command()
def get(
    id: Annotated[int, typer.Argument(help="Meme id")],
    store: StoreOption = None,
):
    """Show one meme with its tags and content path."""
    lib = _get_library(store)
    with _handle_errors():
        meme = lib.get_meme(id)
    if _get_json_output():
        _echo_json(meme.to_dict())
    else:
        typer.echo(_format_meme(meme))


@app.command()
def path(
    basename: Annotated[str, typer.Argument(help="Content reference of a meme")],
    store: StoreOption = None,
):
    """Print the absolute path of a content file."""
    lib = _get_library(store)
    with _handle_errors():
        typer.echo(lib.real_path(basename))


@app.command()
def complete(
    text: Annotated[str, typer.Argument(help="namespace prefix, or namespace:value-prefix")] = "",
    store: StoreOption = None,
):
    """
    Autocomplete namespaces or tag values.

    \b
    Examples:
        memelib complete ani          # namespaces starting with "ani"
        memelib complete animal:ca    # values in "animal" starting with "ca"
    """
    lib = _get_library(store)
    with _handle_errors():
        if ":" in text:
            namespace, prefix = text.split(":", 1)
            results = lib.values_with_prefix(namespace, prefix)
        else:
            results = lib.namespaces_with_prefix(text)
    if _get_json_output():
        _echo_json(results)
    else:
        for r in results:
            typer.echo(r)


@app.command()
def fuzzy(
    value: Annotated[str, typer.Argument(help="Approximate tag value")],
    store: StoreOption = None,
):
    """Find tags whose value resembles VALUE, best match first."""
    lib = _get_library(store)
    with _handle_errors():
        tags = lib.tags_by_value_fuzzy(value)
    if _get_json_output():
        _echo_json([t.to_dict() for t in tags])
    else:
        for t in tags:
            typer.echo(t)


@app.command()
def stats(
    store: StoreOption = None,
):
    """Show meme and tag counts."""
    lib = _get_library(store)
    with _handle_errors():
        data = lib.stats()
    if _get_json_output():
        _echo_json(data)
    else:
        typer.echo(f"memes:     {data['memes']}")
        typer.echo(f"favorites: {data['favorites']}")
        typer.echo(f"trashed:   {data['trashed']}")
        typer.echo(f"tags:      {data['tags']}")


@app.command()
def info(
    store: StoreOption = None,
):
    """Show data directory, schema version and SQLite version."""
    lib = _get_library(store)
    with _handle_errors():
        data = {
            "data_dir": str(lib.data_dir()),
            "schema_version": lib.table_version(),
            "engine_version": lib.engine_version(),
        }
    if _get_json_output():
        _echo_json(data)
    else:
        typer.echo(f"data dir:       {data['data_dir']}")
        typer.echo(f"schema version: {data['schema_version']}")
        typer.echo(f"sqlite version: {data['engine_version']}")


# -----------------------------------------------------------------------------

def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="memelib CLI", data_dir=_get_store_override())
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
