"""Training engine, configuration, metrics and pipelines."""
