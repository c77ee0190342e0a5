"""Built-in CLI sub-commands for compassone-cache.

* :mod:`~compassone_cache.commands.cache` -- inspect and maintain a cache
  directory (``stats``, ``cleanup``, ``clear``, ``get``, ``set``,
  ``delete``).
* :mod:`~compassone_cache.commands.config` -- view and modify the global
  configuration file.

Each module exports a :class:`typer.Typer` sub-application that
:mod:`compassone_cache.app` mounts on the root app.
"""
