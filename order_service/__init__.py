"""Order save service: persists user-edited order aggregates to the data service."""
