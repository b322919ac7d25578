"""Service layer: the AutoGather context object and CLI."""
