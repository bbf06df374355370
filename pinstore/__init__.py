"""pinstore: content-addressed store primitives for pinbuild."""
