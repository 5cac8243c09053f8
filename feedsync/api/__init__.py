"""HTTP API for running imports and reading the import history."""
