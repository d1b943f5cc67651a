"""Entity model, reference data and the source extractor."""
