"""cx-toolbelt.

Command line toolbelt for the Cloud 66 platform.

High-level architecture
-----------------------

Every command maps a CLI invocation to one or more calls against the Cloud 66
REST API (v3) and renders the JSON response as aligned text or writes files to
disk.

Core subpackages
----------------

- ``cx_toolbelt.api``: typed HTTP client, response models and auth token
  handling.
- ``cx_toolbelt.cli``: the ``cx`` typer application and its command groups
  (stacks, services, snapshots, formations, config).
- ``cx_toolbelt.bundle``: formation bundle manifest, tar/untar and the
  download/upload workflows built on top of the API client.
- ``cx_toolbelt.workflow``: loads the deploy workflow served for a formation
  and executes its step DAG locally.
- ``cx_toolbelt.core``: settings, profiles, ``.cx.yml`` and logging.
"""

__version__ = "0.1.0"
