"""Data layer: models, field registries, query AST and stores."""
