"""Gem Check site builder.

Compiles the Gem Check checklist (Jinja2 page templates, Markdown content,
stylesheets and static assets) into a deployable `build` directory.

The build is described as a task graph: tasks declare their dependencies,
the resolver layers them into ready sets, and the executor runs each ready
set concurrently. In development, a watch coordinator reruns parts of the
graph when sources change and notifies the dev server so browsers reload.
"""

__all__ = ["__version__"]
__version__ = "0.2.0"
