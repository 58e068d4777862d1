"""tfingest - normalize Terraform state into tabular rows.

Quick start::

    from tfingest.lib import BackendRegistry, fetch_tables, load_config

    registry = BackendRegistry.from_declarations(load_config("backends.yaml"))
    frames = fetch_tables(registry).to_frames()
    frames["tf_resources"].head()
"""

__version__ = "1.0.0"
