"""HTTP surface: schemas, dependencies and routes."""
