"""Generation engine package: model adapter, turn loop, streaming, pre-generation."""
