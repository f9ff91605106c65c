"""runwitness CLI — Typer-based command-line interface.

Provides the ``runwitness`` command with subcommands for attesting a build
run in one go, or in two steps (``start`` before the build, ``finish``
after it) when the watcher cannot stay alive for the whole run.

Status output uses Rich on stderr; attestations go to stdout or a file.
"""
