"""Infrastructure adapters: oracle, store, sinks, telemetry, configuration."""
