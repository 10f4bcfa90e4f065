"""Dataset sources producing permission graph snapshots."""
