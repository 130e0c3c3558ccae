"""Password hashing primitives."""
