"""Cross-cutting primitives: exceptions, retry, correlation."""
