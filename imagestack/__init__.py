"""imagestack - build container root filesystems from declarative recipes.

This package schedules recipe targets against an OCI image layout and
materializes working copies through a full-copy or a copy-on-write
snapshot storage backend.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
